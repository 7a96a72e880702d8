# =============================================================================
# Models Package — Pydantic V2 Schemas
# =============================================================================
# Request/response schemas for the API, kept separate from the ORM models in
# docrag/db/models.py. Stored file names, task ids and embeddings never
# appear in a response.
# =============================================================================
