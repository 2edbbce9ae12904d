"""Domain layer: entities and value objects, independent of persistence."""
