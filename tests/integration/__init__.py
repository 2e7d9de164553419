"""Tests against a running PostgreSQL.

Every test here is marked ``integration`` and skipped when nothing listens
on localhost:5432. Point TESTING_DATABASE_URL at a scratch database:

    pytest -m integration tests/integration/
"""
