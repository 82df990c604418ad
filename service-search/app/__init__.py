"""Search service package.

Layout:
- ``api``: HTTP endpoints for hybrid search, scoring configuration and the
  embedding pipeline (status, enqueue).
- ``main``: FastAPI application wiring the shared ``candidate_search`` components.
"""
