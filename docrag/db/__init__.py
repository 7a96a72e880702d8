# =============================================================================
# Database Package
# =============================================================================
# engine.py: async sessions for the API, sync sessions for the worker and
# scripts. models.py: tenants, API keys, documents, chunks, conversations,
# messages, and the pgvector backend's chunk_vectors table.
# =============================================================================
