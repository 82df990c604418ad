"""Embedding job pipeline.

- ``base``: ``EmbeddingJob`` and the at-least-once ``JobQueue`` interface.
- ``memory`` / ``redis_queue``: queue transports.
- ``retry``: backoff policy for re-enqueued jobs.
- ``worker``: ``EmbeddingWorker`` consumer loops.
"""
