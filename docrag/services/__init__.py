# =============================================================================
# Services Package — Business Logic
# =============================================================================
# Called by the API routers and the Celery worker:
#   - extractor.py: text extraction (plain text, Docling for PDF/DOCX/HTML)
#   - chunker.py: sentence-grouping chunker with fixed-size fallback
#   - embedder.py: OpenAI embedding generation (batch processing)
#   - vectorstore.py: pluggable vector store protocol (pgvector, Chroma)
#   - pipeline.py: document processing state machine
#   - documents.py: upload, lookup, reprocess and delete
#   - orchestrator.py: retrieval-augmented chat turn
#   - conversations.py: conversation listing, loading, deletion
#   - llm.py: multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
#   - auth.py / rate_limiter.py: API keys and per-tenant Redis token buckets
# =============================================================================
