"""API subpackage for the search service.

Routers expose endpoints for hybrid search, per-tenant scoring configuration
and embedding jobs. Transport layer remains thin and delegates to the
orchestrator, the config resolver and the job queue.
"""
