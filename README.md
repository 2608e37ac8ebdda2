# redismq

A message queue on top of Redis lists, with priorities.

Each priority level gets its own Redis list (`<queue>:p<n>`). Consumers
always take from the lowest-numbered (most urgent) non-empty list first,
moving each message atomically (`BLMOVE`) into a `<queue>:processing` list
while it is handled. A message whose handler raises goes to the
`<queue>:dead` list, where you can look at it and send it back for another
try.

## Features

- Priorities from `0` (most urgent) up to `MQConfig.max_priority - 1`
  (16 levels by default). Named levels: `Priority.HIGH` (0),
  `Priority.NORMAL` (5), `Priority.LOW` (10), `Priority.MIN` (15).
  `priority_name()` gives the display name of the band a priority falls into.
- Single and batch publishing; a batch is sent through one pipeline,
  grouped by priority. Publishing returns the `Message` objects sent.
- Background consumer threads that you start and stop by ID.
- A dead-letter list, with peeking and retrying.
- A monitor that counts published, consumed and failed messages, keeps
  timings in nanoseconds, samples the queue and dead-letter sizes, and calls
  your hooks at a set interval.

## Usage

The package needs a reachable Redis server. By default it connects to
`localhost:6379`; change `config.redis.addr`, `password`, `db` and the
timeouts in `RedisConfig` as needed. Creating a `RedisMQ` pings the server
and raises `ConnectionFailedError` if it cannot be reached.

```python
from redismq.config import default_mq_config
from redismq.message import Message
from redismq.priority import Priority, priority_name
from redismq.queue import RedisMQ

config = default_mq_config("orders")

with RedisMQ(config) as mq:
    mq.publish("plain message")                       # default priority (5)
    mq.publish_with_priority("urgent message", Priority.HIGH)

    msg = Message.create("with metadata", Priority.NORMAL)
    msg.set_metadata("index", 1)
    mq.publish_message(msg)

    mq.publish_batch(["a", "b", "c"])

    def handle(message):
        print(priority_name(message.priority), message.content)

    consumer_id = mq.consume_async(handle)
    # ... later
    mq.stop_consumer(consumer_id)

    print("waiting:", mq.size())
    print("processing:", mq.processing_size())
    print("dead:", mq.dead_size())
    for dead in mq.peek_dead(0, -1):
        print("failed:", dead.content)
    mq.retry_dead_messages(mq.dead_size(), Priority.HIGH)
```

Other operations on `RedisMQ`: `size_by_priority`, `peek_queue`,
`peek_processing`, `flush_queue`, `flush_processing`, `flush_dead`,
`flush_all`, `stop_all_consumers`, `consumer_count`, `consumer_ids`,
`is_consumer_running` and `close`. Leaving the `with` block closes the queue,
which stops the monitor and every consumer and closes the connection.

Messages travel as compact JSON with the fields `id`, `content`,
`priority`, `timestamp` (nanoseconds) and, when not empty, `metadata`; see
`Message.to_json` and `Message.from_json`.

### Monitoring

```python
monitor = mq.monitor
monitor.set_interval(5.0)            # seconds; used from the next start
monitor.add_hook(lambda metrics: print(metrics))
monitor.start()                      # resets all metrics
...
monitor.stop()
print(monitor.get_metrics())         # dict of MetricType -> MetricValue
```

Publish and consume timings are recorded only while the monitor is running.

### Logging

`MQConfig.logger` is any object with `debug`, `info`, `warn` and `error`
methods taking positional arguments. The default, `NullLogger`, discards
everything; `redismq.examples.PrintLogger` prints to standard output.
Set `enable_logging = False` to silence the queue entirely.

### Errors

Everything the queue raises derives from `redismq.errors.RedisMQError`.
Once closed, the queue refuses further work with `QueueClosedError`.
Priorities at or beyond the configured maximum raise `InvalidPriorityError`
where a particular priority list is asked for; elsewhere they are clamped
into range. Redis failures are wrapped in `WrappedError`, which keeps the
original exception as `cause`.

## Examples

The `redismq-examples` command runs demonstrations against a Redis server:

```
redismq-examples basic       # publish, consume until Ctrl+C, retry dead letters
redismq-examples consumer    # 100 messages shared among 5 consumers
redismq-examples monitor     # publish and consume under the monitor until Ctrl+C
redismq-examples priority    # show higher priorities being served first
```

Options: `--addr host:port` and `--queue NAME`. The same demonstrations are
available as functions in `redismq.examples` (`run_basic`,
`run_multi_consumer`, `run_monitor`, `run_priority`).

## What it does not do

- Messages left in the processing list (for example after a crash) are not
  redelivered automatically; inspect them with `peek_processing` and clear
  them with `flush_processing`.
- A failed message is moved to the dead-letter list at once. The
  `max_retries`, `ack_deadline` and `consumer_timeout` settings in `MQConfig`
  are stored but not acted on.

## Tests

The tests are written for pytest and are installed with the `test` extra.