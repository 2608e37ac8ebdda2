"""Exceptions raised by the message queue."""

from __future__ import annotations


class RedisMQError(Exception):
    """Base class for every error the queue raises."""

    default_message = "消息队列错误"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(self.default_message if message is None else message)


class EmptyQueueNameError(RedisMQError):
    """The queue name is empty."""

    default_message = "队列名称不能为空"


class InvalidPriorityError(RedisMQError):
    """A priority lies outside the configured range."""

    default_message = "无效的优先级"


class ConnectionFailedError(RedisMQError):
    """The Redis server could not be reached."""

    default_message = "Redis连接失败"


class ConsumerNotFoundError(RedisMQError):
    """No consumer is registered under the given id."""

    default_message = "消费者不存在"


class ConsumerNotRunningError(RedisMQError):
    """The consumer exists but has already stopped."""

    default_message = "消费者未运行"


class QueueClosedError(RedisMQError):
    """The queue has been closed."""

    default_message = "队列已关闭"


class HandlerNilError(RedisMQError):
    """No message handler was given."""

    default_message = "消息处理器不能为空"


class WrappedError(RedisMQError):
    """An error with a context prefix in front of the error that caused it."""

    def __init__(self, prefix: str, cause: BaseException) -> None:
        super().__init__(f"{prefix}: {cause}")
        self.prefix = prefix
        self.cause = cause
        self.__cause__ = cause


def wrap_error(err: BaseException | None, fmt: str, *args: object) -> WrappedError | None:
    """Prefix ``err`` with ``fmt % args``; return None when ``err`` is None."""
    if err is None:
        return None
    prefix = fmt % args if args else fmt
    return WrappedError(prefix, err)