import threading
import time

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from redismq.config import MQConfig, default_mq_config
from redismq.errors import (
    ConnectionFailedError,
    ConsumerNotFoundError,
    EmptyQueueNameError,
    HandlerNilError,
    InvalidPriorityError,
    QueueClosedError,
    WrappedError,
)
from redismq.message import Message
from redismq.monitor import MetricType
from redismq.priority import Priority
from redismq.queue import RedisMQ


class FakeRedis:
    def __init__(self, fail=()):
        self.lists = {}
        self.fail = set(fail)
        self.closed = False
        self.pipelines = 0
        self._lock = threading.Lock()

    def _check(self, name):
        if name in self.fail:
            raise RedisConnectionError(f"{name} failed")

    def ping(self):
        self._check("ping")
        return True

    def rpush(self, name, *values):
        self._check("rpush")
        with self._lock:
            items = self.lists.setdefault(name, [])
            items.extend(values)
            return len(items)

    def lpop(self, name):
        with self._lock:
            items = self.lists.get(name)
            return items.pop(0) if items else None

    def llen(self, name):
        with self._lock:
            return len(self.lists.get(name, []))

    def lrange(self, name, start, end):
        with self._lock:
            items = list(self.lists.get(name, []))
        n = len(items)
        if start < 0:
            start = max(n + start, 0)
        if end < 0:
            end = n + end
        end = min(end, n - 1)
        return items[start : end + 1] if start <= end else []

    def blmove(self, first_list, second_list, timeout, src="LEFT", dest="RIGHT"):
        with self._lock:
            items = self.lists.get(first_list)
            if not items:
                return None
            value = items.pop(0)
            self.lists.setdefault(second_list, []).append(value)
            return value

    def lrem(self, name, count, value):
        with self._lock:
            items = self.lists.get(name, [])
            if value in items:
                items.remove(value)
                return 1
            return 0

    def delete(self, *names):
        with self._lock:
            return sum(1 for name in names if self.lists.pop(name, None) is not None)

    def pipeline(self, transaction=True):
        self.pipelines += 1
        return FakePipeline(self)

    def close(self):
        self.closed = True


class FakePipeline:
    def __init__(self, client):
        self._client = client
        self._commands = []

    def rpush(self, name, *values):
        self._commands.append(lambda: self._client.rpush(name, *values))

    def delete(self, *names):
        self._commands.append(lambda: self._client.delete(*names))

    def execute(self):
        return [command() for command in self._commands]


class RecordingLogger:
    def __init__(self):
        self.records = []

    def debug(self, *args):
        self.records.append(("debug", args))

    def info(self, *args):
        self.records.append(("info", args))

    def warn(self, *args):
        self.records.append(("warn", args))

    def error(self, *args):
        self.records.append(("error", args))


@pytest.fixture
def fake():
    return FakeRedis()


@pytest.fixture
def mq(fake):
    config = default_mq_config("jobs")
    config.consumer_interval = 0.01
    queue = RedisMQ(config, client=fake)
    yield queue
    if not queue.closed:
        queue.close()


def _consume_n(mq, count):
    seen = []
    stop = threading.Event()

    def handler(raw):
        msg = Message.from_json(raw)
        seen.append(msg)
        if len(seen) >= count:
            stop.set()
        if msg.content == "bad":
            raise RuntimeError("boom")

    mq.consume(stop, handler)
    return seen


@pytest.mark.parametrize(
    "config, error",
    [
        (MQConfig(queue_name=""), EmptyQueueNameError),
        (MQConfig(queue_name="jobs", max_priority=0), InvalidPriorityError),
        (MQConfig(queue_name="jobs", max_priority=4, default_priority=Priority(4)), InvalidPriorityError),
    ],
)
def test_invalid_config(config, error):
    with pytest.raises(error):
        RedisMQ(config, client=FakeRedis())


def test_connection_failure():
    with pytest.raises(WrappedError) as info:
        RedisMQ(default_mq_config("jobs"), client=FakeRedis(fail={"ping"}))
    assert isinstance(info.value.cause, ConnectionFailedError)
    assert "ping failed" in str(info.value)


def test_queue_names(mq):
    assert mq.queue_name_for_priority(5) == "jobs:p5"
    assert mq.queue_name_for_priority(99) == "jobs:p15"
    assert mq.queue_name_for_priority(-3) == "jobs:p0"
    assert mq.processing_queue == "jobs:processing"
    assert mq.dead_queue == "jobs:dead"


def test_publish_uses_default_priority(mq, fake):
    mq.publish("hello")
    assert mq.size_by_priority(Priority.NORMAL) == 1
    assert mq.size() == 1
    assert [m.content for m in mq.peek_queue(Priority.NORMAL, 0, -1)] == ["hello"]
    assert fake.llen("jobs:p5") == 1


def test_publish_message_round_trip(mq):
    msg = Message.create("payload", Priority.LOW).set_metadata("index", 3)
    mq.publish_message(msg)
    assert mq.peek_queue(Priority.LOW, 0, -1) == [msg]


def test_publish_clamps_priority(mq):
    mq.publish_with_priority("far", 40)
    assert mq.size_by_priority(15) == 1
    assert mq.peek_queue(15, 0, -1)[0].priority == 40


def test_publish_failure_is_wrapped():
    queue = RedisMQ(default_mq_config("jobs"), client=FakeRedis(fail={"rpush"}))
    with pytest.raises(WrappedError) as info:
        queue.publish("x")
    assert info.value.prefix == "发布消息失败"


def test_publish_batch_groups_by_priority(mq):
    messages = [
        Message.create("a", Priority.HIGH),
        Message.create("b", Priority.LOW),
        Message.create("c", Priority.HIGH),
    ]
    mq.publish_batch_messages(messages)
    assert [m.content for m in mq.peek_queue(Priority.HIGH, 0, -1)] == ["a", "c"]
    assert [m.content for m in mq.peek_queue(Priority.LOW, 0, -1)] == ["b"]
    assert mq.size() == 3


def test_publish_batch_default_and_explicit(mq):
    mq.publish_batch(["x", "y"])
    mq.publish_batch_with_priority(["z"], Priority.MIN)
    assert mq.size_by_priority(Priority.NORMAL) == 2
    assert mq.size_by_priority(Priority.MIN) == 1


def test_publish_empty_batch_skips_redis(mq, fake):
    assert mq.publish_batch_messages([]) == []
    assert fake.pipelines == 0


def test_size_by_priority_out_of_range(mq):
    with pytest.raises(WrappedError) as info:
        mq.size_by_priority(16)
    assert isinstance(info.value.cause, InvalidPriorityError)
    assert "16" in info.value.prefix


def test_consume_serves_highest_priority_first(mq):
    mq.publish_with_priority("low", Priority.LOW)
    mq.publish_with_priority("normal", Priority.NORMAL)
    mq.publish_with_priority("high", Priority.HIGH)
    seen = _consume_n(mq, 3)
    assert [m.content for m in seen] == ["high", "normal", "low"]
    assert mq.size() == 0
    assert mq.processing_size() == 0


def test_consume_failure_goes_to_dead_letters(mq):
    mq.publish("bad")
    _consume_n(mq, 1)
    assert mq.dead_size() == 1
    assert [m.content for m in mq.peek_dead(0, -1)] == ["bad"]
    assert mq.processing_size() == 0


def test_consume_requires_handler(mq):
    with pytest.raises(HandlerNilError):
        mq.consume(threading.Event(), None)


def test_consume_async_and_stop(mq):
    received = []
    done = threading.Event()

    def handler(msg):
        received.append(msg.content)
        done.set()

    mq.publish("async")
    consumer_id = mq.consume_async(handler)
    assert mq.is_consumer_running(consumer_id)
    assert mq.consumer_ids() == [consumer_id]
    assert done.wait(5)
    mq.stop_consumer(consumer_id)
    assert received == ["async"]
    assert not mq.is_consumer_running(consumer_id)
    assert mq.consumer_count() == 0


def test_unparseable_message_reaches_dead_letters(mq, fake):
    fake.rpush("jobs:p0", "not json")
    consumer_id = mq.consume_async(lambda msg: None)
    deadline = time.monotonic() + 5
    while mq.dead_size() == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    mq.stop_consumer(consumer_id)
    assert mq.dead_size() == 1
    assert mq.size() == 0
    assert mq.processing_size() == 0
    assert mq.peek_dead(0, -1) == []
    assert fake.lrange("jobs:dead", 0, -1) == ["not json"]


def test_stop_unknown_consumer(mq):
    with pytest.raises(WrappedError) as info:
        mq.stop_consumer("consumer-0")
    assert isinstance(info.value.cause, ConsumerNotFoundError)


def test_peek_skips_bad_messages(fake):
    logger = RecordingLogger()
    config = default_mq_config("jobs")
    config.logger = logger
    queue = RedisMQ(config, client=fake)
    fake.rpush("jobs:processing", "{broken", Message.create("ok", 0).to_json())
    assert [m.content for m in queue.peek_processing(0, -1)] == ["ok"]
    assert any(level == "warn" for level, _ in logger.records)


def test_retry_dead_messages(mq, fake):
    fake.rpush("jobs:dead", *(Message.create(str(i), Priority.LOW).to_json() for i in range(3)))
    assert mq.retry_dead_messages(0, Priority.HIGH) == 0
    assert mq.retry_dead_messages(2, Priority.HIGH) == 2
    assert mq.dead_size() == 1
    assert [m.content for m in mq.peek_queue(Priority.HIGH, 0, -1)] == ["0", "1"]
    assert mq.retry_dead_messages(10, Priority.HIGH) == 1
    assert mq.dead_size() == 0


def test_flush_operations(mq, fake):
    mq.publish_with_priority("a", Priority.HIGH)
    mq.publish_with_priority("b", Priority.LOW)
    fake.rpush("jobs:dead", "d")
    fake.rpush("jobs:processing", "p")

    mq.flush_queue(Priority.HIGH)
    assert mq.size_by_priority(Priority.HIGH) == 0
    assert mq.size_by_priority(Priority.LOW) == 1

    mq.flush_dead()
    assert mq.dead_size() == 0
    mq.flush_processing()
    assert mq.processing_size() == 0

    mq.publish("c")
    fake.rpush("jobs:dead", "d")
    mq.flush_all()
    assert mq.size() == 0
    assert mq.dead_size() == 0


def test_flush_queue_out_of_range(mq):
    with pytest.raises(WrappedError) as info:
        mq.flush_queue(20)
    assert isinstance(info.value.cause, InvalidPriorityError)


def test_monitor_records_activity(mq):
    monitor = mq.monitor
    monitor.start()
    try:
        mq.publish("good")
        mq.publish("bad")
        _consume_n(mq, 2)
        mq.publish("later")
        monitor.update_queue_metrics()
        metrics = monitor.get_metrics()
    finally:
        monitor.stop()
    assert metrics[MetricType.PUBLISHED].count == 3
    assert metrics[MetricType.CONSUMED].count == 1
    assert metrics[MetricType.FAILED].count == 1
    assert metrics[MetricType.QUEUE_SIZE].count == 1
    assert metrics[MetricType.DEAD_SIZE].count == 1


def test_close_stops_everything(fake):
    queue = RedisMQ(default_mq_config("jobs"), client=fake)
    queue.consume_async(lambda msg: None)
    queue.close()
    assert queue.closed
    assert fake.closed
    assert queue.consumer_count() == 0
    with pytest.raises(QueueClosedError):
        queue.publish("x")
    with pytest.raises(QueueClosedError):
        queue.size()
    with pytest.raises(QueueClosedError):
        queue.close()


def test_context_manager_closes(fake):
    with RedisMQ(default_mq_config("jobs"), client=fake) as queue:
        queue.publish("x")
    assert queue.closed
    assert fake.closed