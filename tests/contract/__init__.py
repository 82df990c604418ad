"""API contract tests.

These tests validate that public endpoints conform to the agreed camelCase
request/response schemas and status codes. Services run against in-memory
backends so no database or model server is needed.
"""
