"""
Passport Gamification Test Suite
================================

Test Organization
-----------------
- tests/unit/          : Fast tests against the in-memory store and mocks
- tests/unit/core/     : Event bus and config manager
- tests/unit/domain/   : Pure domain models
- tests/integration/   : PostgreSQL / Redis via testcontainers

Testing Philosophy
------------------
- Unit tests never touch a database or Redis
- Integration tests are skipped when Docker is unavailable
- Use pytest markers to categorize and selectively run tests
"""
