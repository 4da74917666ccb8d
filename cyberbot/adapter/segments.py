"""OneBot v11 message segments."""

from typing import Any

Segment = dict[str, Any]


def text(content: Any) -> Segment:
    return {"type": "text", "data": {"text": str(content)}}


def reply(message_id: int | str) -> Segment:
    return {"type": "reply", "data": {"id": str(message_id)}}


def at(user_id: int | str) -> Segment:
    return {"type": "at", "data": {"qq": str(user_id)}}


def image(file: str) -> Segment:
    return {"type": "image", "data": {"file": file}}


def face(face_id: int | str) -> Segment:
    return {"type": "face", "data": {"id": str(face_id)}}


def node(user_id: int | str, nickname: str, content: Any) -> Segment:
    """A forward-message node."""
    return {
        "type": "node",
        "data": {"user_id": str(user_id), "nickname": nickname, "content": normalize(content)},
    }


def normalize(message: Any) -> list[Segment]:
    """
    Coerce a message into a segment list.

    Plain strings and numbers become a single text segment; a lone segment is
    wrapped; lists may mix segments and plain values.
    """
    if isinstance(message, (str, int, float)):
        return [text(message)]
    if isinstance(message, dict):
        return [message]
    if isinstance(message, (list, tuple)):
        segments = []
        for item in message:
            segments.extend(normalize(item))
        return segments
    raise TypeError(f"Unsupported message type: {type(message).__name__}")
