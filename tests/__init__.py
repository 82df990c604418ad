"""Tests for candidate search components.

Unit tests run against in-memory backends and stub embedding providers.
The ``contract`` package exercises the HTTP API and ``integration`` the live
PostgreSQL and Redis backends.
"""
