# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
# Bodies accepted by the API. Uploads arrive as multipart form data and need
# no schema here.
# =============================================================================

import uuid

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """
    Request body for POST /api/v1/chat.

    Example:
        {
            "question": "What is the notice period in the lease?",
            "document_ids": ["5a0f0c0e-2d4f-4c47-9a4e-0f1ad9f0b3b1"],
            "conversation_id": null
        }
    """

    question: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        description="The question to answer from the selected documents",
        examples=["What is the notice period in the lease?"],
    )

    # Blank questions are rejected by the orchestrator with a 400, so this
    # only needs to ensure the list is present
    document_ids: list[uuid.UUID] = Field(
        ...,
        description="Documents to search. Every id must be READY and owned by the caller's tenant.",
    )

    # Omit to start a new conversation. An id that does not exist for the
    # caller's tenant also starts a new conversation.
    conversation_id: uuid.UUID | None = Field(
        default=None,
        description="Continue an existing conversation",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "question": "What is the notice period in the lease?",
                    "document_ids": ["5a0f0c0e-2d4f-4c47-9a4e-0f1ad9f0b3b1"],
                },
            ]
        }
    )
