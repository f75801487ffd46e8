"""
Campaigns Application DTOs
===========================

Response models for the webhook and slash command endpoints.
"""

from typing import List

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    """Response model for a processed Jira webhook."""
    status: str = "success"
    commands: List[str] = Field(default_factory=list, description="Tracking commands applied")


class SlashCommandAck(BaseModel):
    """Immediate acknowledgement; the result follows via response_url."""
    response_type: str = "ephemeral"
    text: str
