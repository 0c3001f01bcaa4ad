"""
Pydantic schemas for HTTP request/response validation.

Messages themselves travel as ChatDropMessage (see entities.py); this module
holds the envelopes around them.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class IngestResponse(BaseModel):
    """
    Response model for POST /messages.

    duplicate is True when an identical message was already stored and
    nothing was written. Only messages sent with an id can be duplicates.
    """
    status: str = Field(default="ok", description="Operation status")
    duplicate: bool = Field(..., description="Whether the message was already stored")
    id: Optional[int] = Field(None, description="Id of the stored message")


class MarkAsReadResponse(BaseModel):
    """Response model for marking a conversation read."""
    status: str = Field(default="ok", description="Operation status")
    updated: int = Field(..., ge=0, description="Number of messages moved from NEW to READ")
