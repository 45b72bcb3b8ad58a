"""Error response schema."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Standard error response schema.

    Used for all error responses (4xx, 5xx) across the API.
    """

    error: str = Field(
        ...,
        description="Error type identifier",
        examples=["authentication_failed", "conflict", "invalid_state"]
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["Invalid credentials", "Only pending invitations can be cancelled"]
    )
    details: Optional[dict] = Field(
        None,
        description="Additional error context",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": "authentication_failed",
                    "message": "Invalid credentials"
                },
                {
                    "error": "conflict",
                    "message": "An active invitation already exists for this email"
                },
            ]
        }
    )
