"""Transcript clean-up and LINE reply text for the voice path.

WHY: Raw speech-to-text output for casual Japanese is full of hesitation
fillers and doubled punctuation. Users get a tidied transcript, and the
help and error replies are the only feedback they ever see.

HOW: clean_transcription() applies FILLER_PATTERNS, then collapses
punctuation runs and whitespace, then guarantees a sentence-final mark.
The format_* builders return LINE text message objects.

RULES:
- Fillers are removed wherever they occur, not only as whole words
- A run of 、/。 collapses to its first character
- Output ends in 。, ！ or ？ unless it is empty
- Unknown error codes fall back to a generic message
"""

from __future__ import annotations

import re

from line_drive_bridge.config import MAX_AUDIO_BYTES, SUMMARY_THRESHOLD_CHARS
from line_drive_bridge.line.client import text_message
from line_drive_bridge.transcription.models import TranscriptionResult

FILLER_PATTERNS = [
    re.compile(p)
    for p in (
        r"あー+",
        r"えー+と?",
        r"うー+ん",
        r"そのー+",
        r"あのー+",
        r"えっ+と",
        r"まあ+",
        r"なんか",
        r"なんていうか",
        r"ちょっと",
    )
]

_PUNCTUATION_RUN = re.compile(r"[、。]+")
_WHITESPACE_RUN = re.compile(r"\s+")
_SPACED_COMMAS = re.compile(r"、\s*、")
_SPACED_STOPS = re.compile(r"。\s*。")
_SENTENCE_END = ("。", "！", "？")

ERROR_MESSAGES = {
    "no_api_key": "音声認識のAPIキーが設定されていません",
    "audio_too_large": "音声ファイルが大きすぎます（最大{}MB）".format(MAX_AUDIO_BYTES // (1024 * 1024)),
    "unsupported_format": "対応していない音声形式です",
    "user_not_enabled": "この機能は現在利用できません",
}
GENERIC_ERROR = "エラーが発生しました"


def clean_transcription(text: str | None) -> str:
    """Remove fillers and tidy punctuation.

    Example: "えーと、今日は。。あのー会議です" → "、今日は。会議です。"
    """
    if not text:
        return ""

    cleaned = text
    for pattern in FILLER_PATTERNS:
        cleaned = pattern.sub("", cleaned)

    cleaned = _PUNCTUATION_RUN.sub(lambda m: m.group(0)[0], cleaned)
    cleaned = _WHITESPACE_RUN.sub(" ", cleaned).strip()
    cleaned = _SPACED_COMMAS.sub("、", cleaned)
    cleaned = _SPACED_STOPS.sub("。", cleaned)

    if cleaned and not cleaned.endswith(_SENTENCE_END):
        cleaned += "。"
    return cleaned


def is_help_request(text: str | None) -> bool:
    """True for messages asking how the voice bot works."""
    if not text:
        return False
    lowered = text.strip().lower()
    return lowered == "!voice" or "help" in lowered or "ヘルプ" in lowered


def format_transcription_message(result: TranscriptionResult) -> dict:
    text = "📝 文字起こし結果\n\n【原文】\n{}".format(result.text or "（音声を認識できませんでした）")
    if result.summary:
        text += "\n\n📌 【要約】\n{}".format(result.summary)
    return text_message(text)


def format_help_message() -> dict:
    return text_message(
        "🎙️ 音声文字起こし機能\n"
        "\n"
        "音声メッセージを送信すると、自動的に文字起こしします。\n"
        "\n"
        "【機能】\n"
        "• 日本語音声の認識\n"
        "• フィラーワード自動除去\n"
        "• 長文の自動要約（{}文字以上）\n"
        "\n"
        "【対応形式】\n"
        "• LINE音声メッセージ (m4a)\n"
        "• 最大{}MBまで\n"
        "\n"
        "【使い方】\n"
        "1. 音声メッセージを録音\n"
        "2. 送信\n"
        "3. 文字起こし結果が返信されます".format(
            SUMMARY_THRESHOLD_CHARS, MAX_AUDIO_BYTES // (1024 * 1024)
        )
    )


def format_error_message(code: str) -> dict:
    return text_message("⚠️ {}".format(ERROR_MESSAGES.get(code, GENERIC_ERROR)))
