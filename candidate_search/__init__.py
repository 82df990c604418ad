"""Shared libraries for candidate search.

Subpackages:
- ``candidate_search.common``: configuration, logging, metrics, tracing and events.
- ``candidate_search.embeddings``: embedding providers and their factory.
- ``candidate_search.vector_store``: candidate vector storage backends.
- ``candidate_search.jobs``: embedding job queue and worker.
- ``candidate_search.search``: keyword scoring, strategies and the hybrid orchestrator.

Notes:
- Service entrypoints live under ``service-*/app`` and keep transport code thin.
"""
