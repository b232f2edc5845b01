"""Configuration constants, environment defaults, and .env loading.

WHY: Centralizes every configurable value (credentials, API endpoints,
partitioning policy, timeouts) so they are easy to find and override.
Secrets come from the environment, never from source code.

HOW: python-dotenv loads the .env file on import. Constants are plain
module-level values read from os.environ with defaults. The load_*()
functions return required secrets and raise a clear ValueError when one
is missing, so misconfiguration fails at startup rather than mid-request.

RULES:
- Booleans accept "true"/"1"/"yes" (case-insensitive); anything else is False
- Required secrets are loaded through load_*() functions, never defaulted
- ALLOW_UNSIGNED_WEBHOOKS defaults to False (strict signature checking)
- TARGET_UTC_OFFSET_HOURS defaults to 9 (Japan Standard Time)
- All defaults can be overridden via environment variables
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env from the project root (where the process is started)
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("true", "1", "yes")


def _env_list(name: str) -> list[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


# ---------------------------------------------------------------------------
# LINE Messaging API
# ---------------------------------------------------------------------------

LINE_API_BASE_URL = os.getenv("LINE_API_BASE_URL", "https://api.line.me")
LINE_DATA_API_BASE_URL = os.getenv("LINE_DATA_API_BASE_URL", "https://api-data.line.me")
LINE_CHANNEL_SECRET = os.getenv("LINE_CHANNEL_SECRET", "")

SIGNATURE_HEADER = "x-line-signature"
"""Header carrying the base64 HMAC-SHA256 of the raw request body."""

ALLOW_UNSIGNED_WEBHOOKS = _env_flag("ALLOW_UNSIGNED_WEBHOOKS")
"""Escape hatch for local testing: process requests that fail verification."""

RESOLVE_DISPLAY_NAMES = _env_flag("RESOLVE_DISPLAY_NAMES")

# ---------------------------------------------------------------------------
# Google Drive
# ---------------------------------------------------------------------------

GOOGLE_TOKEN_URL = os.getenv("GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token")
GOOGLE_DRIVE_API_URL = os.getenv("GOOGLE_DRIVE_API_URL", "https://www.googleapis.com/drive/v3")
GOOGLE_DRIVE_UPLOAD_URL = os.getenv(
    "GOOGLE_DRIVE_UPLOAD_URL", "https://www.googleapis.com/upload/drive/v3"
)

STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "drive").strip().lower()
""""drive" archives to Google Drive; "local" archives to LOCAL_STORAGE_DIR."""
LOCAL_STORAGE_DIR = os.getenv("LOCAL_STORAGE_DIR", "saved_messages")

# ---------------------------------------------------------------------------
# Partitioning and time
# ---------------------------------------------------------------------------

PARTITION_STRATEGY = os.getenv("PARTITION_STRATEGY", "group_date")
SHORT_PARTITION_IDS = _env_flag("SHORT_PARTITION_IDS")
TARGET_UTC_OFFSET_HOURS = int(os.getenv("TARGET_UTC_OFFSET_HOURS", "9"))

# ---------------------------------------------------------------------------
# Timeouts (seconds)
# ---------------------------------------------------------------------------

CONTENT_DOWNLOAD_TIMEOUT_S = float(os.getenv("CONTENT_DOWNLOAD_TIMEOUT_S", "30"))
HTTP_TIMEOUT_S = float(os.getenv("HTTP_TIMEOUT_S", "60"))

# ---------------------------------------------------------------------------
# Speech-to-text (voice webhook)
# ---------------------------------------------------------------------------

SONIOX_BASE_URL = os.getenv("SONIOX_BASE_URL", "https://api.soniox.com/v1")
SONIOX_MODEL = os.getenv("SONIOX_MODEL", "stt-async-v4")
TRANSCRIPTION_LANGUAGE = os.getenv("TRANSCRIPTION_LANGUAGE", "ja")

VOICE_LINE_CHANNEL_SECRET = os.getenv("VOICE_LINE_CHANNEL_SECRET", "") or LINE_CHANNEL_SECRET
VOICE_ENABLED_USER_IDS = _env_list("VOICE_ENABLED_USER_IDS")
"""LINE user ids allowed to use transcription; empty means everyone."""

MAX_AUDIO_BYTES = 25 * 1024 * 1024

SUMMARY_API_BASE_URL = os.getenv("SUMMARY_API_BASE_URL", "https://api.openai.com/v1")
SUMMARY_MODEL = os.getenv("SUMMARY_MODEL", "gpt-4o-mini")
SUMMARY_THRESHOLD_CHARS = int(os.getenv("SUMMARY_THRESHOLD_CHARS", "200"))
"""Cleaned transcripts at least this long get a summary section."""
SUMMARY_MAX_TOKENS = int(os.getenv("SUMMARY_MAX_TOKENS", "200"))

# ---------------------------------------------------------------------------
# Server and logging
# ---------------------------------------------------------------------------

ENABLE_DEBUG_ENDPOINTS = _env_flag("ENABLE_DEBUG_ENDPOINTS")
DEBUG_LOG_CAPACITY = int(os.getenv("DEBUG_LOG_CAPACITY", "50"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


@dataclass(frozen=True)
class DriveCredentials:
    """OAuth2 refresh-token credentials and the archive root folder."""

    client_id: str
    client_secret: str
    refresh_token: str
    root_folder_id: str


def load_channel_access_token() -> str:
    """Load the LINE channel access token from the environment.

    RULES:
    - Raises ValueError if the token is missing or empty
    """
    token = os.getenv("LINE_CHANNEL_ACCESS_TOKEN", "").strip()
    if not token:
        raise ValueError(
            "LINE channel access token not configured. "
            "Add LINE_CHANNEL_ACCESS_TOKEN to the .env file."
        )
    return token


def load_voice_channel_access_token() -> str:
    """Token for the voice channel, falling back to the main channel's."""
    token = os.getenv("VOICE_LINE_CHANNEL_ACCESS_TOKEN", "").strip()
    return token or load_channel_access_token()


def load_summary_api_key() -> str:
    """Load the key for the transcript summary API.

    RULES:
    - Raises ValueError if the key is missing; summaries are then disabled
    """
    key = os.getenv("VOICE_OPENAI_API_KEY", "").strip() or os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "Summary API key not configured. "
            "Add VOICE_OPENAI_API_KEY to the .env file."
        )
    return key


def load_drive_credentials() -> DriveCredentials:
    """Load Google Drive OAuth2 credentials from the environment.

    WHY: Every Drive call needs a fresh access token minted from the
    refresh token, and every stored object lives under one root folder.

    HOW: Reads the four GOOGLE_* variables and reports all missing names
    at once.

    RULES:
    - Raises ValueError listing every missing variable
    - Never returns placeholder values
    """
    names = {
        "client_id": "GOOGLE_CLIENT_ID",
        "client_secret": "GOOGLE_CLIENT_SECRET",
        "refresh_token": "GOOGLE_REFRESH_TOKEN",
        "root_folder_id": "GOOGLE_DRIVE_FOLDER_ID",
    }
    values = {field: os.getenv(env, "").strip() for field, env in names.items()}
    missing = [names[field] for field, value in values.items() if not value]
    if missing:
        raise ValueError(
            "Google Drive credentials not configured. Missing: {}".format(
                ", ".join(missing)
            )
        )
    return DriveCredentials(**values)


def load_api_key() -> str:
    """Load the Soniox API key from the environment.

    RULES:
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv("SONIOX_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "Soniox API key not configured. "
            "Add SONIOX_API_KEY to the .env file."
        )
    return key
