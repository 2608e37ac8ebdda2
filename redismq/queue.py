"""A priority message queue stored in Redis lists."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Iterable

import redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError
from redis.retry import Retry

from .config import MQConfig, RedisConfig
from .consumer import ConsumerGroup, MessageHandler
from .errors import (
    ConnectionFailedError,
    EmptyQueueNameError,
    HandlerNilError,
    InvalidPriorityError,
    QueueClosedError,
    WrappedError,
    wrap_error,
)
from .message import Message
from .monitor import Monitor
from .priority import Priority

RawHandler = Callable[[str], None]

_DEFAULT_PORT = 6379
_FETCH_TIMEOUT = 1


def _wrapped(err: BaseException, fmt: str, *args: object) -> WrappedError:
    wrapped = wrap_error(err, fmt, *args)
    assert wrapped is not None
    return wrapped


def _connect(settings: RedisConfig) -> redis.Redis:
    host, sep, port = settings.addr.rpartition(":")
    if not sep:
        host, port = settings.addr, str(_DEFAULT_PORT)
    return redis.Redis(
        host=host or "localhost",
        port=int(port),
        db=settings.db,
        password=settings.password or None,
        socket_timeout=settings.read_timeout,
        socket_connect_timeout=settings.dial_timeout,
        retry=Retry(
            ExponentialBackoff(cap=settings.max_retry_backoff, base=settings.min_retry_backoff),
            settings.max_retries,
        ),
        decode_responses=True,
    )


class RedisMQ:
    """A message queue with one Redis list per priority, a processing list and a dead-letter list."""

    def __init__(self, config: MQConfig, client: Any = None) -> None:
        if not config.queue_name:
            raise EmptyQueueNameError()
        if config.max_priority <= 0:
            raise InvalidPriorityError()
        if config.default_priority >= config.max_priority:
            raise InvalidPriorityError()

        self.config = config
        self._client = client if client is not None else _connect(config.redis)
        try:
            self._client.ping()
        except RedisError as err:
            raise _wrapped(ConnectionFailedError(), "%s", err) from err

        self.queue_base = config.queue_name
        self.processing_queue = f"{config.queue_name}:processing"
        self.dead_queue = f"{config.queue_name}:dead"
        self._closed = False
        self._closed_event = threading.Event()
        self._consumer_group = ConsumerGroup(self)
        self._monitor = Monitor(self)

        self._log("info", "RedisMQ实例已创建，队列名称:", config.queue_name)

    def __enter__(self) -> RedisMQ:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self._closed:
            self.close()

    @property
    def monitor(self) -> Monitor:
        """The metrics monitor of this queue."""
        return self._monitor

    @property
    def closed(self) -> bool:
        return self._closed

    def _log(self, level: str, *args: object) -> None:
        if self.config.enable_logging:
            getattr(self.config.logger, level)(*args)

    def _check_open(self) -> None:
        if self._closed:
            raise QueueClosedError()

    def _check_priority(self, priority: int) -> None:
        if priority >= self.config.max_priority:
            raise _wrapped(
                InvalidPriorityError(),
                "优先级 %d 超过最大优先级 %d",
                priority,
                self.config.max_priority,
            )

    def _clamp(self, priority: int) -> int:
        return max(0, min(int(priority), self.config.max_priority - 1))

    def queue_name_for_priority(self, priority: int) -> str:
        """Return the Redis key of a priority's list; out-of-range priorities are clamped."""
        return f"{self.queue_base}:p{self._clamp(priority)}"

    def publish(self, content: str) -> Message:
        """Publish ``content`` with the default priority."""
        return self.publish_with_priority(content, self.config.default_priority)

    def publish_with_priority(self, content: str, priority: int) -> Message:
        """Publish ``content`` with ``priority``."""
        self._check_open()
        return self.publish_message(Message.create(content, priority))

    def publish_message(self, msg: Message) -> Message:
        """Append ``msg`` to the list of its priority."""
        self._check_open()
        started = time.perf_counter_ns()
        queue_name = self.queue_name_for_priority(msg.priority)
        data = msg.to_json()
        try:
            self._client.rpush(queue_name, data)
        except RedisError as err:
            raise _wrapped(err, "发布消息失败") from err

        self._log("debug", "消息已发布，ID:", msg.id, "优先级:", msg.priority)
        if self._monitor.is_running():
            self._monitor.record_publish(time.perf_counter_ns() - started)
        return msg

    def publish_batch(self, contents: Iterable[str]) -> list[Message]:
        """Publish several contents with the default priority."""
        return self.publish_batch_with_priority(contents, self.config.default_priority)

    def publish_batch_with_priority(self, contents: Iterable[str], priority: int) -> list[Message]:
        """Publish several contents with one priority."""
        self._check_open()
        messages = [Message.create(content, priority) for content in contents]
        return self.publish_batch_messages(messages)

    def publish_batch_messages(self, messages: list[Message]) -> list[Message]:
        """Publish messages in one pipeline, grouped by priority."""
        self._check_open()
        if not messages:
            return messages

        groups: dict[int, list[str]] = {}
        for msg in messages:
            groups.setdefault(self._clamp(msg.priority), []).append(msg.to_json())

        pipe = self._client.pipeline(transaction=False)
        for priority, payloads in groups.items():
            pipe.rpush(self.queue_name_for_priority(priority), *payloads)
        try:
            pipe.execute()
        except RedisError as err:
            raise _wrapped(err, "批量发布消息失败") from err

        self._log("debug", "已批量发布", len(messages), "条消息")
        return messages

    def _fetch_next(self, stop_event: threading.Event) -> str | None:
        for priority in range(self.config.max_priority):
            if stop_event.is_set() or self._closed_event.is_set():
                return None
            try:
                raw = self._client.blmove(
                    self.queue_name_for_priority(priority),
                    self.processing_queue,
                    _FETCH_TIMEOUT,
                    src="LEFT",
                    dest="RIGHT",
                )
            except RedisError as err:
                self._log("error", "从优先级队列", priority, "获取消息失败:", err)
                continue
            if raw is not None:
                return raw
        return None

    def _process(self, raw: str, handler: RawHandler) -> None:
        started = time.perf_counter_ns()
        failed = False
        try:
            handler(raw)
        except Exception as exc:  # noqa: BLE001 - any handler failure sends the message to dead letters
            failed = True
            self._log("error", "处理消息失败:", exc)
            try:
                self._client.rpush(self.dead_queue, raw)
            except RedisError as move_err:
                self._log("error", "将消息移动到死信队列失败:", move_err)

        if self._monitor.is_running():
            if failed:
                self._monitor.record_failed()
            else:
                self._monitor.record_consume(time.perf_counter_ns() - started)

        try:
            self._client.lrem(self.processing_queue, 1, raw)
        except RedisError as remove_err:
            self._log("error", "从处理队列中移除消息失败:", remove_err)

    def consume(self, stop_event: threading.Event, handler: RawHandler | None) -> None:
        """Serve raw messages to ``handler``, highest priority first, until ``stop_event`` is set.

        Raises QueueClosedError when the queue is closed while consuming.
        """
        self._check_open()
        if handler is None:
            raise HandlerNilError()

        while True:
            if stop_event.is_set():
                return
            if self._closed_event.is_set():
                raise QueueClosedError()
            raw = self._fetch_next(stop_event)
            if raw is None:
                stop_event.wait(self.config.consumer_interval)
                continue
            self._process(raw, handler)

    def consume_async(self, handler: MessageHandler | None) -> str:
        """Start a background consumer and return its id."""
        self._check_open()
        return self._consumer_group.add_consumer(handler)

    def stop_consumer(self, consumer_id: str) -> None:
        """Stop one consumer and wait for it."""
        self._check_open()
        self._consumer_group.stop_consumer(consumer_id)

    def stop_all_consumers(self) -> None:
        """Stop every running consumer."""
        self._consumer_group.stop_all_consumers()

    def consumer_count(self) -> int:
        return self._consumer_group.consumer_count()

    def consumer_ids(self) -> list[str]:
        return self._consumer_group.consumer_ids()

    def is_consumer_running(self, consumer_id: str) -> bool:
        return self._consumer_group.is_consumer_running(consumer_id)

    def size(self) -> int:
        """Return the number of waiting messages over all priorities."""
        self._check_open()
        total = 0
        for priority in range(self.config.max_priority):
            try:
                total += self._client.llen(self.queue_name_for_priority(priority))
            except RedisError as err:
                raise _wrapped(err, "获取队列大小失败") from err
        return total

    def size_by_priority(self, priority: int) -> int:
        """Return the number of waiting messages of one priority."""
        self._check_open()
        self._check_priority(priority)
        return self._client.llen(self.queue_name_for_priority(priority))

    def processing_size(self) -> int:
        """Return the number of messages being processed."""
        self._check_open()
        return self._client.llen(self.processing_queue)

    def dead_size(self) -> int:
        """Return the number of dead-letter messages."""
        self._check_open()
        return self._client.llen(self.dead_queue)

    def _parse_messages(self, payloads: Iterable[str]) -> list[Message]:
        messages = []
        for payload in payloads:
            try:
                messages.append(Message.from_json(payload))
            except ValueError as err:
                self._log("warn", "解析消息失败:", err)
        return messages

    def _peek(self, key: str, start: int, stop: int, context: str) -> list[Message]:
        try:
            payloads = self._client.lrange(key, start, stop)
        except RedisError as err:
            raise _wrapped(err, context) from err
        return self._parse_messages(payloads)

    def peek_processing(self, start: int, stop: int) -> list[Message]:
        """Return messages being processed in the index range, without removing them."""
        self._check_open()
        return self._peek(self.processing_queue, start, stop, "获取处理中消息失败")

    def peek_dead(self, start: int, stop: int) -> list[Message]:
        """Return dead-letter messages in the index range, without removing them."""
        self._check_open()
        return self._peek(self.dead_queue, start, stop, "获取死信队列消息失败")

    def peek_queue(self, priority: int, start: int, stop: int) -> list[Message]:
        """Return waiting messages of one priority in the index range."""
        self._check_open()
        self._check_priority(priority)
        return self._peek(self.queue_name_for_priority(priority), start, stop, "获取队列消息失败")

    def retry_dead_messages(self, count: int, priority: int) -> int:
        """Move up to ``count`` dead-letter messages back to ``priority``; return how many moved."""
        self._check_open()
        if count <= 0:
            return 0

        queue_name = self.queue_name_for_priority(priority)
        processed = 0
        for _ in range(count):
            try:
                raw = self._client.lpop(self.dead_queue)
            except RedisError as err:
                raise _wrapped(err, "从死信队列获取消息失败") from err
            if raw is None:
                break
            try:
                self._client.rpush(queue_name, raw)
            except RedisError as err:
                raise _wrapped(err, "将消息放回队列失败") from err
            processed += 1

        if processed > 0:
            self._log("info", "已将", processed, "条消息从死信队列重试, 优先级:", priority)
        return processed

    def _delete(self, key: str, context: str) -> None:
        try:
            self._client.delete(key)
        except RedisError as err:
            raise _wrapped(err, context) from err

    def flush_queue(self, priority: int) -> None:
        """Remove every waiting message of one priority."""
        self._check_open()
        self._check_priority(priority)
        self._delete(self.queue_name_for_priority(priority), "清空队列失败")
        self._log("info", "已清空优先级队列:", priority)

    def flush_processing(self) -> None:
        """Remove every message from the processing list."""
        self._check_open()
        self._delete(self.processing_queue, "清空处理队列失败")
        self._log("info", "已清空处理队列")

    def flush_dead(self) -> None:
        """Remove every dead-letter message."""
        self._check_open()
        self._delete(self.dead_queue, "清空死信队列失败")
        self._log("info", "已清空死信队列")

    def flush_all(self) -> None:
        """Remove every message from all lists of this queue."""
        self._check_open()
        pipe = self._client.pipeline(transaction=False)
        for priority in range(self.config.max_priority):
            pipe.delete(self.queue_name_for_priority(priority))
        pipe.delete(self.processing_queue)
        pipe.delete(self.dead_queue)
        try:
            pipe.execute()
        except RedisError as err:
            raise _wrapped(err, "清空所有队列失败") from err
        self._log("info", "已清空所有队列")

    def close(self) -> None:
        """Stop the monitor and all consumers, then close the Redis connection."""
        self._check_open()
        self._closed = True
        self._monitor.stop()
        self._closed_event.set()

        try:
            self.stop_all_consumers()
        except Exception as exc:  # noqa: BLE001 - closing must go on
            self._log("error", "停止所有消费者失败:", exc)

        try:
            self._client.close()
        except RedisError as err:
            raise _wrapped(err, "关闭Redis连接失败") from err

        self._log("info", "RedisMQ已关闭")


__all__ = ["RedisMQ", "Priority"]