"""Runnable demonstrations of the queue: basic use, many consumers, monitoring and priorities."""

from __future__ import annotations

import argparse
import random
import signal
import sys
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Mapping, Sequence, TypeVar

from redis.exceptions import RedisError

from .config import default_mq_config
from .errors import RedisMQError
from .message import Message
from .monitor import MetricType, MetricValue
from .priority import Priority
from .queue import RedisMQ

_ERRORS = (RedisMQError, RedisError)
_NS_PER_MS = 1_000_000
_CHECK_INTERVAL = 1.0
_MONITOR_INTERVAL = 5.0
_PUBLISH_INTERVAL = 0.2

_T = TypeVar("_T")

_DEFAULT_QUEUES = {
    "basic": "example-queue",
    "consumer": "multi-consumer-demo",
    "monitor": "monitor-demo",
    "priority": "priority-queue-demo",
}


def _report(*args: object) -> None:
    print(*args, file=sys.stderr)


def _quiet(call: Callable[[], _T], default: _T) -> _T:
    try:
        return call()
    except _ERRORS:
        return default


def _flush(mq: RedisMQ) -> None:
    try:
        mq.flush_all()
    except _ERRORS as err:
        _report(f"清空队列失败: {err}")


def _stop(mq: RedisMQ, consumer_id: str) -> None:
    try:
        mq.stop_consumer(consumer_id)
    except _ERRORS as err:
        _report(f"停止消费者失败: {err}")


class PrintLogger:
    """A logger that prints every entry to standard output with a level tag."""

    @staticmethod
    def _emit(tag: str, args: tuple[object, ...]) -> None:
        print(f"[{tag}] " + " ".join(str(arg) for arg in args))

    def debug(self, *args: object) -> None:
        self._emit("DEBUG", args)

    def info(self, *args: object) -> None:
        self._emit("INFO", args)

    def warn(self, *args: object) -> None:
        self._emit("WARN", args)

    def error(self, *args: object) -> None:
        self._emit("ERROR", args)


def format_metrics(metrics: Mapping[MetricType, MetricValue]) -> str:
    """Render a metrics snapshot as a readable report."""

    def get(metric: MetricType) -> MetricValue:
        return metrics.get(metric) or MetricValue()

    lines = [
        "",
        "--------- 队列监控指标 ---------",
        f"已发布消息: {get(MetricType.PUBLISHED).count}",
        f"已消费消息: {get(MetricType.CONSUMED).count}",
        f"处理失败消息: {get(MetricType.FAILED).count}",
    ]
    for metric, label in ((MetricType.PUBLISH_TIME, "发布"), (MetricType.CONSUME_TIME, "消费")):
        value = get(metric)
        if value.count > 0:
            lines.append(f"{label}消息平均耗时: {value.average / _NS_PER_MS:.2f} ms")
            lines.append(f"{label}消息最小耗时: {value.min / _NS_PER_MS:.2f} ms")
            lines.append(f"{label}消息最大耗时: {value.max / _NS_PER_MS:.2f} ms")
    lines += [
        f"队列中消息数: {get(MetricType.QUEUE_SIZE).count}",
        f"死信队列消息数: {get(MetricType.DEAD_SIZE).count}",
        "--------------------------------",
    ]
    return "\n".join(lines)


def run_basic(mq: RedisMQ, stop_event: threading.Event) -> int:
    """Publish ten messages, consume them until ``stop_event`` is set, then retry dead letters.

    Returns the number of dead-letter messages put back on the queue.
    """
    _flush(mq)

    print("发布消息...")
    for index in range(10):
        msg = Message.create(f"测试消息 #{index}", Priority(index % 3 * 5))
        msg.set_metadata("index", index).set_metadata("timestamp", int(time.time()))
        try:
            mq.publish_message(msg)
        except _ERRORS as err:
            _report(f"发布消息失败: {err}")

    def handler(msg: Message) -> None:
        print(f"收到消息: ID={msg.id}, 内容={msg.content}, 优先级={int(msg.priority)}")
        index = msg.get_metadata("index")
        if isinstance(index, (int, float)) and not isinstance(index, bool):
            print(f"  元数据 - 索引: {int(index)}")
        if msg.content == "测试消息 #3":
            raise RuntimeError("处理消息 #3 故意失败")

    print("启动消费者...")
    consumer_id = mq.consume_async(handler)
    print(f"消费者已启动，ID: {consumer_id}")

    print("服务运行中，按 Ctrl+C 停止...")
    stop_event.wait()
    print("收到停止信号，准备关闭...")

    _stop(mq, consumer_id)

    retried = 0
    try:
        dead_size = mq.dead_size()
    except _ERRORS as err:
        _report(f"获取死信队列大小失败: {err}")
    else:
        if dead_size > 0:
            print(f"死信队列中有 {dead_size} 条消息")
            try:
                dead = mq.peek_dead(0, dead_size - 1)
            except _ERRORS as err:
                _report(f"查看死信消息失败: {err}")
            else:
                for position, msg in enumerate(dead):
                    print(f"死信消息 #{position}: ID={msg.id}, 内容={msg.content}")
            try:
                retried = mq.retry_dead_messages(dead_size, Priority.HIGH)
            except _ERRORS as err:
                _report(f"重试死信消息失败: {err}")
            else:
                print(f"已将 {retried} 条消息从死信队列重试(高优先级)")

    print("程序已退出")
    return retried


def run_multi_consumer(mq: RedisMQ, message_count: int, consumer_count: int, timeout: float) -> int:
    """Share ``message_count`` messages among ``consumer_count`` consumers.

    Once half the messages are done, two consumers are stopped. Returns how many
    messages were handled before all were done or ``timeout`` seconds passed.
    """
    _flush(mq)

    print(f"发布 {message_count} 条消息...")
    mq.publish_batch([f"批量消息 #{index}" for index in range(message_count)])
    print(f"队列大小: {_quiet(mq.size, 0)}")

    processed = 0
    lock = threading.Lock()

    def make_handler(consumer_index: int) -> Callable[[Message], None]:
        def handler(msg: Message) -> None:
            nonlocal processed
            with lock:
                processed += 1
                count = processed
            print(f"[消费者-{consumer_index}] 处理消息: {msg.content} (进度: {count}/{message_count})")
            time.sleep(random.uniform(0.05, 0.2))

        return handler

    consumer_ids: list[str] = []
    for consumer_index in range(consumer_count):
        try:
            consumer_id = mq.consume_async(make_handler(consumer_index))
        except _ERRORS as err:
            _report(f"启动消费者 {consumer_index} 失败: {err}")
            continue
        consumer_ids.append(consumer_id)
        print(f"消费者 {consumer_index} 已启动，ID: {consumer_id}")

    print(f"活跃消费者数量: {mq.consumer_count()}")

    start = time.monotonic()
    deadline = start + timeout
    next_tick = start + _CHECK_INTERVAL
    while True:
        if next_tick > deadline:
            time.sleep(max(0.0, deadline - time.monotonic()))
            print("处理超时")
            break
        time.sleep(max(0.0, next_tick - time.monotonic()))
        next_tick += _CHECK_INTERVAL

        size = _quiet(mq.size, 0)
        with lock:
            done = processed
        print(f"进度: {done}/{message_count}, 队列中剩余: {size}")

        if done >= message_count:
            print("所有消息已处理完成")
            break

        if done >= message_count // 2 and len(consumer_ids) > 2:
            print("处理了一半消息，减少消费者数量...")
            for consumer_id in consumer_ids[:2]:
                if mq.is_consumer_running(consumer_id):
                    print(f"停止消费者 ID: {consumer_id}")
                    _stop(mq, consumer_id)
            consumer_ids = consumer_ids[2:]
            print(f"活跃消费者数量: {mq.consumer_count()}")

    print("停止所有消费者...")
    try:
        mq.stop_all_consumers()
    except _ERRORS as err:
        _report(f"停止所有消费者失败: {err}")

    with lock:
        total = processed
    print(f"多消费者演示完成，共处理 {total} 条消息")
    return total


def run_monitor(mq: RedisMQ, stop_event: threading.Event) -> dict[MetricType, MetricValue]:
    """Publish and consume under the monitor until ``stop_event`` is set; return the final metrics."""
    _flush(mq)

    monitor = mq.monitor
    monitor.set_interval(_MONITOR_INTERVAL)
    monitor.add_hook(lambda metrics: print(format_metrics(metrics)))
    monitor.start()
    print("监控已启动...")

    def handler(msg: Message) -> None:
        time.sleep(random.uniform(0.05, 0.15))
        if random.random() < 0.1:
            raise RuntimeError("模拟随机处理失败")

    consumer_id = mq.consume_async(handler)
    print(f"消费者已启动，ID: {consumer_id}")

    def publish_loop() -> None:
        count = 0
        while not stop_event.wait(_PUBLISH_INTERVAL):
            msg = Message.create(f"监控测试消息 #{count}", Priority(count % 15))
            try:
                mq.publish_message(msg)
            except _ERRORS as err:
                _report(f"发布消息失败: {err}")
            count += 1

    publisher = threading.Thread(target=publish_loop, name="redismq-publisher", daemon=True)
    publisher.start()

    print("服务运行中，按 Ctrl+C 停止...")
    stop_event.wait()
    print("收到停止信号，准备关闭...")
    publisher.join()

    _stop(mq, consumer_id)
    monitor.stop()

    final = monitor.get_metrics()
    print("最终监控数据:")
    print(format_metrics(final))
    print("程序已退出")
    return final


_PRIORITY_LABELS = {Priority.HIGH: "高", Priority.NORMAL: "普通", Priority.LOW: "低"}


def run_priority(mq: RedisMQ, wait: float) -> list[str]:
    """Show that higher priorities are served first; return the contents in the order handled.

    ``wait`` is how long each round lets the consumer drain the queue, in seconds;
    the per-message work and the head start of the second round scale with it.
    """
    delay = wait / 25
    head_start = wait / 5
    received: list[str] = []

    _flush(mq)

    def publish(template: str, priority: Priority, count: int, label: str) -> None:
        for index in range(count):
            try:
                mq.publish_with_priority(template.format(index), priority)
            except _ERRORS as err:
                _report(f"发布{label}消息失败: {err}")

    def handler(msg: Message) -> None:
        label = _PRIORITY_LABELS.get(msg.priority, f"未知({int(msg.priority)})")
        print(f"收到{label}消息: {msg.content}")
        received.append(msg.content)
        time.sleep(delay)

    print("发布三种优先级的消息...")
    publish("低优先级消息 #{}", Priority.LOW, 5, "低优先级")
    publish("普通优先级消息 #{}", Priority.NORMAL, 5, "普通优先级")
    publish("高优先级消息 #{}", Priority.HIGH, 5, "高优先级")

    high = _quiet(lambda: mq.size_by_priority(Priority.HIGH), 0)
    normal = _quiet(lambda: mq.size_by_priority(Priority.NORMAL), 0)
    low = _quiet(lambda: mq.size_by_priority(Priority.LOW), 0)
    print(f"队列大小 - 高优先级: {high}, 普通优先级: {normal}, 低优先级: {low}")

    print("启动消费者，将按优先级顺序处理消息...")
    consumer_id = mq.consume_async(handler)
    time.sleep(wait)
    _stop(mq, consumer_id)

    total = _quiet(mq.size, 0)
    print(f"所有队列中剩余消息: {total}")

    if total == 0:
        print("\n再次测试，先发布低优先级消息，后发布高优先级消息...")
        publish("低优先级消息(第二批) #{}", Priority.LOW, 10, "低优先级")
        try:
            consumer_id = mq.consume_async(handler)
        except _ERRORS as err:
            _report(f"启动消费者失败: {err}")
        else:
            time.sleep(head_start)
            print("在处理低优先级消息过程中，发布高优先级消息...")
            publish("高优先级消息(插队) #{}", Priority.HIGH, 5, "高优先级")
            time.sleep(wait)
            _stop(mq, consumer_id)

    print("优先级队列演示完成")
    return received


@contextmanager
def _stop_on_signals(stop_event: threading.Event) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return
    signals = (signal.SIGINT, signal.SIGTERM)
    previous = {signum: signal.getsignal(signum) for signum in signals}
    for signum in signals:
        signal.signal(signum, lambda *_: stop_event.set())
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def main(argv: Sequence[str] | None = None) -> int:
    """Run one of the demonstrations against a Redis server."""
    parser = argparse.ArgumentParser(
        prog="redismq-examples", description="Demonstrations of the Redis message queue."
    )
    parser.add_argument("example", choices=sorted(_DEFAULT_QUEUES))
    parser.add_argument("--addr", help="Redis address as host:port")
    parser.add_argument("--queue", help="queue name")
    args = parser.parse_args(argv)

    config = default_mq_config(args.queue or _DEFAULT_QUEUES[args.example])
    if args.addr:
        config.redis.addr = args.addr
    if args.example == "basic":
        config.logger = PrintLogger()

    try:
        mq = RedisMQ(config)
    except _ERRORS as err:
        _report(f"创建Redis消息队列失败: {err}")
        return 1

    try:
        with mq:
            if args.example in ("basic", "monitor"):
                stop_event = threading.Event()
                with _stop_on_signals(stop_event):
                    if args.example == "basic":
                        run_basic(mq, stop_event)
                    else:
                        run_monitor(mq, stop_event)
            elif args.example == "consumer":
                run_multi_consumer(mq, 100, 5, 30.0)
            else:
                run_priority(mq, 5.0)
    except _ERRORS as err:
        _report(err)
        return 1
    return 0