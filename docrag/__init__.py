# =============================================================================
# Multi-Tenant Document RAG Service
# =============================================================================
# Tenants upload documents, a background pipeline turns them into searchable
# chunks, and a chat endpoint answers questions grounded in those chunks
# with citations and persisted conversation history.
#
# Package structure:
#   docrag/
#   ├── api/          → FastAPI route handlers (documents, chat) + tenant deps
#   ├── db/           → Database engines, sessions and ORM models
#   ├── models/       → Pydantic V2 request/response schemas
#   ├── services/     → Business logic (extraction, chunking, pipeline,
#   │                    vector store, LLM, orchestrator, conversations)
#   └── workers/      → Celery app and the document processing task
# =============================================================================
