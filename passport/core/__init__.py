"""
Core infrastructure: configuration, logging, database, events and Redis.

Nothing in `passport.core` knows about badges, rules or quests.
"""
