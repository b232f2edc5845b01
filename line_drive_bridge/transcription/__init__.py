"""Speech-to-text for LINE voice messages."""

from line_drive_bridge.transcription.client import SonioxAPIError, SonioxClient
from line_drive_bridge.transcription.messages import clean_transcription
from line_drive_bridge.transcription.service import VoiceTranscriber
from line_drive_bridge.transcription.summary import SummaryClient

__all__ = ["SonioxAPIError", "SonioxClient", "SummaryClient", "VoiceTranscriber", "clean_transcription"]
