"""Vector store adapters and utilities.

Primary components:
- ``base``: abstract ``CandidateVectorStore`` interface, record types and
  common exceptions.
- ``pgvector``: PostgreSQL/pgvector implementation of the interface.
- ``memory``: numpy-backed implementation for tests and local runs.
- ``factory``: helpers to construct a store from typed config.

Guidance:
- Prefer constructing via ``factory.create_vector_store_from_config`` so
  runtime services remain decoupled from specific backends.
"""
