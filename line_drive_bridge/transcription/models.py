"""Soniox API response dataclasses used by the voice path.

WHY: The voice webhook only needs the job status while polling and the
final plain text, not per-token timing. Typed dataclasses keep the
polling loop and the transcript fetch explicit about which fields they
rely on.

HOW: Each dataclass maps to one Soniox JSON object and is built with a
from_dict factory.

RULES:
- status is one of "queued", "processing", "completed", "error"
- TranscriptResponse.text is the service's pre-assembled plaintext
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class TranscriptionStatus:
    """Status response from polling GET /v1/transcriptions/{id}."""

    id: str
    status: str
    file_id: str | None = None
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptionStatus:
        return cls(
            id=data["id"],
            status=data["status"],
            file_id=data.get("file_id"),
            error_message=data.get("error_message"),
        )


@dataclass
class TranscriptResponse:
    """Transcript from GET /v1/transcriptions/{id}/transcript.

    RULES:
    - text falls back to joining token texts when the field is absent
    """

    id: str
    text: str

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptResponse:
        text = data.get("text")
        if text is None:
            text = "".join(t.get("text", "") for t in data.get("tokens", []))
        return cls(id=data["id"], text=text)


@dataclass
class TranscriptionResult:
    """What the voice path reports back to the user.

    RULES:
    - summary is None for short transcripts or when summarising failed
    """

    text: str
    raw_text: str
    summary: str | None = None
