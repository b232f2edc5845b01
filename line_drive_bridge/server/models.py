"""Pydantic response models for the HTTP API.

WHY: LINE only looks at the status code, but operators calling the
endpoints by hand (and the /docs UI) need stable, documented bodies.

HOW: One model per response shape, each field with a description for
the OpenAPI schema.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Webhook responses serialize received_events as "receivedEvents"
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    """Body of every POST /webhook and POST /voice-webhook response.

    RULES:
    - Always sent with HTTP 200, even when the request was rejected
    - received_events is 0 when nothing was scheduled
    """

    message: str = Field(description="Short outcome, e.g. 'OK' or 'Invalid signature'.")
    received_events: int = Field(
        alias="receivedEvents",
        description="Number of events accepted for processing.",
    )
    timestamp: str = Field(description="Server time (ISO 8601, UTC).")

    model_config = {"populate_by_name": True, "json_schema_extra": {
        "examples": [
            {"message": "OK", "receivedEvents": 2, "timestamp": "2024-01-01T15:30:00+00:00"},
        ]
    }}


class EndpointStatusResponse(BaseModel):
    """Body of GET /webhook and GET /voice-webhook (platform verification)."""

    message: str = Field(description="Which endpoint answered.")
    status: str = Field(description="Always 'OK'.")
    timestamp: str = Field(description="Server time (ISO 8601, UTC).")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status.")
    version: str = Field(description="Package version.")
    storage_configured: bool = Field(description="Whether the archive bridge is ready.")
    voice_configured: bool = Field(description="Whether the voice transcriber is ready.")


class LogEntry(BaseModel):
    """One buffered log record."""

    timestamp: str = Field(description="Record time (ISO 8601, UTC).")
    level: str = Field(description="Log level name.")
    logger: str = Field(description="Logger name.")
    message: str = Field(description="Formatted log message.")


class LogListResponse(BaseModel):
    """Recent log records, oldest first."""

    capacity: int = Field(description="Maximum number of records kept.")
    entries: List[LogEntry] = Field(description="Buffered records, oldest first.")


class LogClearResponse(BaseModel):
    """Result of clearing the log buffer."""

    cleared: int = Field(description="Number of records removed.")


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str = Field(description="Human-readable error message.")
    code: Optional[str] = Field(default=None, description="Machine-readable error code.")
