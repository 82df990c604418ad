"""Utility scripts for operating candidate search.

Scripts include:
- ``enqueue_embeddings.py``: queue embedding jobs for candidates missing vectors.
"""
