"""Embedding providers.

- ``base``: ``EmbeddingProvider`` interface and the ``EmbeddingError`` family.
- ``ollama`` / ``azure_openai``: HTTP backends built on httpx.
- ``sentence_transformer``: in-process model (``local`` extra).
- ``factory``: enum-driven construction from service config.
"""
