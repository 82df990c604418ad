"""Integration test suite against live backing services.

Covers the PgVector store, the client config table, the Redis job queue and
event pub/sub. Tests skip themselves when PostgreSQL or Redis is unreachable.
"""
