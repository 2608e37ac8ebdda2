"""Background consumers that pull messages from a queue and hand them to handlers."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from .config import MQConfig
from .errors import (
    ConsumerNotFoundError,
    ConsumerNotRunningError,
    HandlerNilError,
    wrap_error,
)
from .message import Message

MessageHandler = Callable[[Message], None]
"""Processes one message; raising an exception marks the message as failed."""

RawHandler = Callable[[str], None]


class _ConsumingQueue(Protocol):
    config: MQConfig

    def consume(self, stop_event: threading.Event, handler: RawHandler) -> None: ...


@dataclass
class Consumer:
    """One background consumer and the means to stop it."""

    id: str
    handler: MessageHandler
    stop_event: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None
    running: bool = True


class ConsumerGroup:
    """Starts, tracks and stops the consumers of one queue."""

    def __init__(self, mq: _ConsumingQueue) -> None:
        self._mq = mq
        self._consumers: dict[str, Consumer] = {}
        self._lock = threading.Lock()

    def _log(self, level: str, *args: object) -> None:
        config = self._mq.config
        if config.enable_logging:
            getattr(config.logger, level)(*args)

    def _new_id(self) -> str:
        consumer_id = f"consumer-{time.time_ns()}"
        while consumer_id in self._consumers:
            consumer_id = f"consumer-{time.time_ns()}"
        return consumer_id

    def add_consumer(self, handler: MessageHandler | None) -> str:
        """Start a consumer running ``handler`` in a background thread; return its id."""
        if handler is None:
            raise HandlerNilError()

        with self._lock:
            consumer_id = self._new_id()
            consumer = Consumer(id=consumer_id, handler=handler)
            consumer.thread = threading.Thread(
                target=self._run,
                args=(consumer,),
                name=f"redismq-{consumer_id}",
                daemon=True,
            )
            self._consumers[consumer_id] = consumer
            consumer.thread.start()

        self._log("info", "消费者", consumer_id, "已启动")
        return consumer_id

    def _run(self, consumer: Consumer) -> None:
        handler = consumer.handler

        def handle_raw(raw: str) -> None:
            try:
                msg = Message.from_json(raw)
            except ValueError as exc:
                raise wrap_error(exc, "解析消息失败") from exc
            handler(msg)

        try:
            self._mq.consume(consumer.stop_event, handle_raw)
        except Exception as exc:  # noqa: BLE001 - a consumer thread must not die silently
            self._log("error", "消费者", consumer.id, "停止，错误:", exc)

    def stop_consumer(self, consumer_id: str) -> None:
        """Stop the consumer with ``consumer_id`` and wait for it to finish."""
        with self._lock:
            consumer = self._consumers.get(consumer_id)

        if consumer is None:
            raise wrap_error(ConsumerNotFoundError(), "消费者ID: %s", consumer_id)
        if not consumer.running:
            raise wrap_error(ConsumerNotRunningError(), "消费者ID: %s", consumer_id)

        consumer.stop_event.set()
        thread = consumer.thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

        with self._lock:
            current = self._consumers.get(consumer_id)
            if current is not None:
                current.running = False

        self._log("info", "消费者", consumer_id, "已停止")

    def stop_all_consumers(self) -> None:
        """Stop every running consumer; re-raise the last failure after trying all."""
        with self._lock:
            running = [cid for cid, consumer in self._consumers.items() if consumer.running]

        last_error: Exception | None = None
        for consumer_id in running:
            try:
                self.stop_consumer(consumer_id)
            except Exception as exc:  # noqa: BLE001 - keep stopping the rest
                last_error = exc
                self._log("error", "停止消费者", consumer_id, "错误:", exc)

        if last_error is not None:
            raise last_error

    def consumer_count(self) -> int:
        """Return how many consumers are running."""
        with self._lock:
            return sum(1 for consumer in self._consumers.values() if consumer.running)

    def consumer_ids(self) -> list[str]:
        """Return the ids of the running consumers."""
        with self._lock:
            return [cid for cid, consumer in self._consumers.items() if consumer.running]

    def is_consumer_running(self, consumer_id: str) -> bool:
        """Tell whether the consumer with ``consumer_id`` exists and is running."""
        with self._lock:
            consumer = self._consumers.get(consumer_id)
            return consumer is not None and consumer.running