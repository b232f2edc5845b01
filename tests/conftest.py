"""Shared test fixtures for the line_drive_bridge test suite.

WHY: Most test modules need an empty in-memory store, a root container,
and LINE webhook events shaped like the real platform's. Centralizing
them keeps the event shapes consistent across modules.

HOW: Pytest fixtures provide fresh InMemoryStorage instances. Plain
helper functions build raw event dicts (as LINE sends them) and parsed
WebhookEvent objects.

RULES:
- Every fixture returns a fresh object; no state leaks between tests
- Event helpers default to a one-to-one chat with user U123
- BASE_TS is 2023-11-14T22:13:20Z, i.e. 2023-11-15 07:13:20 at UTC+9
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import pytest

from line_drive_bridge.core.models import ContainerRef, WebhookEvent
from line_drive_bridge.storage.memory import InMemoryStorage

BASE_TS = 1700000000000
FIVE_MINUTES_MS = 5 * 60 * 1000


def source_dict(
    user_id: Optional[str] = "U123",
    group_id: Optional[str] = None,
    room_id: Optional[str] = None,
) -> Dict[str, Any]:
    if group_id:
        data = {"type": "group", "groupId": group_id}
    elif room_id:
        data = {"type": "room", "roomId": room_id}
    else:
        data = {"type": "user"}
    if user_id:
        data["userId"] = user_id
    return data


def text_event_dict(
    text: str = "hello",
    timestamp: int = BASE_TS,
    message_id: str = "m1",
    **source_kwargs: Any,
) -> Dict[str, Any]:
    return {
        "type": "message",
        "timestamp": timestamp,
        "replyToken": "reply-{}".format(message_id),
        "source": source_dict(**source_kwargs),
        "message": {"id": message_id, "type": "text", "text": text},
    }


def media_event_dict(
    message_type: str = "image",
    timestamp: int = BASE_TS,
    message_id: str = "m2",
    file_name: Optional[str] = None,
    **source_kwargs: Any,
) -> Dict[str, Any]:
    message = {"id": message_id, "type": message_type}
    if file_name:
        message["fileName"] = file_name
    return {
        "type": "message",
        "timestamp": timestamp,
        "replyToken": "reply-{}".format(message_id),
        "source": source_dict(**source_kwargs),
        "message": message,
    }


def text_event(*args: Any, **kwargs: Any) -> WebhookEvent:
    return WebhookEvent.from_dict(text_event_dict(*args, **kwargs))


def media_event(*args: Any, **kwargs: Any) -> WebhookEvent:
    return WebhookEvent.from_dict(media_event_dict(*args, **kwargs))


@pytest.fixture
def storage():
    """An empty in-memory store with root container "root"."""
    return InMemoryStorage()


@pytest.fixture
def root(storage):
    return storage.containers[storage.root_id].ref


@pytest.fixture
def slow_storage():
    """In-memory store whose calls take a few ms, so coroutines interleave."""
    return InMemoryStorage(latency_s=0.002)


@pytest.fixture
def container():
    return ContainerRef(id="root", name="LINE_Messages")
