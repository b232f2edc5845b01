"""LINE → Google Drive message bridge.

WHY: Chat messages (text, images, audio, video, files) arriving from the
LINE Messaging API need to be archived in a deterministic Drive hierarchy
so a group's history can be browsed day by day without duplicated folders
or clobbered logs.

HOW: Three-stage pipeline. Verify (signature check on the raw webhook
body), resolve (find-or-create partition and date folders), append
(read-modify-write of the day's log file). An independent voice path
transcribes audio messages and replies with the text.

RULES:
- Storage layout is root / <partition> / <YYYY-MM-DD> / messages_<YYYY-MM-DD>.txt
- Dates and timestamps are computed in the fixed UTC+9 target zone
- Appends never start from empty content when a read fails
- The webhook always answers HTTP 200; outcomes are reported via logging
"""

__version__ = "0.1.0"
