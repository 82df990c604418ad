"""Hybrid candidate search.

- ``keywords``: keyword extraction and tiered per-keyword scoring
- ``scoring``: scoring strategies and their registry
- ``tenant_config``: per-tenant ``ScoringConfig`` resolution
- ``orchestrator``: ``HybridSearchOrchestrator`` and request/page types
"""
