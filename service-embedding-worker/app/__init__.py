"""Embedding worker service package.

Runs ``EmbeddingWorker`` consumers against the shared job queue and turns
candidate ingestion events into embedding jobs.
"""
