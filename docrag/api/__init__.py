# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
# Each module defines a FastAPI APIRouter for one resource:
#   - documents.py: upload, list, inspect, reprocess and delete documents
#   - chat.py: grounded Q&A and conversation history
#   - deps.py: tenant resolution (API keys) and rate limiting
# =============================================================================
