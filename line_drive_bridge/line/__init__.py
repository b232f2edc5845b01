"""LINE Messaging API client."""

from line_drive_bridge.line.client import LineAPIError, LineClient, MessageContent, text_message

__all__ = ["LineAPIError", "LineClient", "MessageContent", "text_message"]
