"""Queue messages and their JSON wire form."""

from __future__ import annotations

import json
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .priority import Priority

_CHARSET = string.ascii_lowercase + string.ascii_uppercase + string.digits
_HTML_ESCAPES = {
    ord("<"): "\\u003c",
    ord(">"): "\\u003e",
    ord("&"): "\\u0026",
    0x2028: "\\u2028",
    0x2029: "\\u2029",
}


def _random_string(length: int) -> str:
    return "".join(secrets.choice(_CHARSET) for _ in range(length))


def generate_id() -> str:
    """Return a unique id: local time to the nanosecond plus a random suffix."""
    seconds, nanos = divmod(time.time_ns(), 1_000_000_000)
    stamp = datetime.fromtimestamp(seconds).strftime("%Y%m%d%H%M%S")
    return f"{stamp}.{nanos:09d}-{_random_string(8)}"


def _sorted_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _sorted_keys(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_sorted_keys(item) for item in value]
    return value


def _field(doc: dict, key: str, kind: type, default: Any) -> Any:
    value = doc.get(key)
    if value is None:
        return default
    if not isinstance(value, kind) or isinstance(value, bool):
        raise ValueError(f"message field {key!r} has wrong type: {value!r}")
    return value


@dataclass
class Message:
    """A message with content, priority, creation time and free metadata."""

    id: str = ""
    content: str = ""
    priority: Priority = Priority.HIGH
    timestamp: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, content: str, priority: int) -> Message:
        """Build a new message with a fresh id and the current time in nanoseconds."""
        return cls(
            id=generate_id(),
            content=content,
            priority=Priority(priority),
            timestamp=time.time_ns(),
        )

    def set_metadata(self, key: str, value: Any) -> Message:
        """Store a metadata value and return the message for chaining."""
        self.metadata[key] = value
        return self

    def get_metadata(self, key: str) -> Any:
        """Return a metadata value, or None when it is absent."""
        return self.metadata.get(key)

    def to_json(self) -> str:
        """Serialise to compact JSON; empty metadata is left out."""
        doc: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "priority": int(self.priority),
            "timestamp": self.timestamp,
        }
        if self.metadata:
            doc["metadata"] = _sorted_keys(self.metadata)
        text = json.dumps(doc, ensure_ascii=False, separators=(",", ":"))
        return text.translate(_HTML_ESCAPES)

    @classmethod
    def from_json(cls, data: str | bytes) -> Message:
        """Parse a message; raise ValueError on malformed input."""
        doc = json.loads(data)
        if not isinstance(doc, dict):
            raise ValueError("message must be a JSON object")
        return cls(
            id=_field(doc, "id", str, ""),
            content=_field(doc, "content", str, ""),
            priority=Priority(_field(doc, "priority", int, 0)),
            timestamp=_field(doc, "timestamp", int, 0),
            metadata=dict(_field(doc, "metadata", dict, {})),
        )