"""Connection and queue configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from .priority import Priority


@runtime_checkable
class Logger(Protocol):
    """What the queue needs from a logger."""

    def debug(self, *args: object) -> None: ...

    def info(self, *args: object) -> None: ...

    def warn(self, *args: object) -> None: ...

    def error(self, *args: object) -> None: ...


def _discarding_logger() -> logging.Logger:
    sink = logging.getLogger("redismq.discard")
    if not any(isinstance(h, logging.NullHandler) for h in sink.handlers):
        sink.addHandler(logging.NullHandler())
    sink.propagate = False
    return sink


class NullLogger:
    """A logger whose records go to a sink that drops them."""

    def __init__(self) -> None:
        self._sink = _discarding_logger()

    def _emit(self, level: int, args: tuple[object, ...]) -> None:
        if self._sink.isEnabledFor(level):
            self._sink.log(level, "%s", " ".join(str(arg) for arg in args))

    def debug(self, *args: object) -> None:
        self._emit(logging.DEBUG, args)

    def info(self, *args: object) -> None:
        self._emit(logging.INFO, args)

    def warn(self, *args: object) -> None:
        self._emit(logging.WARNING, args)

    def error(self, *args: object) -> None:
        self._emit(logging.ERROR, args)


@dataclass
class RedisConfig:
    """Redis connection settings; durations are in seconds."""

    addr: str = "localhost:6379"
    password: str = ""
    db: int = 0
    max_retries: int = 3
    min_retry_backoff: float = 0.008
    max_retry_backoff: float = 0.512
    dial_timeout: float = 5.0
    read_timeout: float = 3.0
    write_timeout: float = 3.0


@dataclass
class MQConfig:
    """Queue settings; durations are in seconds."""

    redis: RedisConfig = field(default_factory=RedisConfig)
    queue_name: str = ""
    consumer_timeout: float = 5.0
    consumer_interval: float = 0.1
    max_retries: int = 3
    ack_deadline: float = 300.0
    max_priority: int = 16
    default_priority: Priority = Priority.NORMAL
    enable_logging: bool = True
    logger: Logger = field(default_factory=NullLogger)


def default_redis_config() -> RedisConfig:
    """Return the default Redis connection settings."""
    return RedisConfig()


def default_mq_config(queue_name: str) -> MQConfig:
    """Return the default queue settings for ``queue_name``."""
    return MQConfig(redis=default_redis_config(), queue_name=queue_name)