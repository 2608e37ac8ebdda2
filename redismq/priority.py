"""Message priorities: lower numbers are served first."""

from __future__ import annotations

from typing import ClassVar


class Priority(int):
    """A message priority; any integer is allowed, named levels are provided."""

    HIGH: ClassVar[Priority]
    NORMAL: ClassVar[Priority]
    LOW: ClassVar[Priority]
    MIN: ClassVar[Priority]

    def __repr__(self) -> str:
        return f"Priority({int(self)})"

    def __str__(self) -> str:
        return str(int(self))


Priority.HIGH = Priority(0)
Priority.NORMAL = Priority(5)
Priority.LOW = Priority(10)
Priority.MIN = Priority(15)


def priority_name(priority: int) -> str:
    """Return the display name of the band a priority falls into."""
    if priority < Priority.NORMAL:
        return "高优先级"
    if priority < Priority.LOW:
        return "普通优先级"
    if priority < Priority.MIN:
        return "低优先级"
    return "最低优先级"