import asyncio
from types import SimpleNamespace

import pytest
from nats.errors import TimeoutError as NatsTimeoutError
from nats.js.errors import NotFoundError

from mpcium_sdk.config import MpciumSettings
from mpcium_sdk.identity.key import IdentityKey

KEY_BYTES = bytes(range(32))


class FakeJsm:
    """In-memory JetStream manager recording every call."""

    def __init__(self):
        self.streams = {}
        self.consumers = {}
        self.calls = []
        self.account_error = None
        self.stream_info_error = None
        self.add_stream_error = None
        self.update_stream_error = None
        self.consumer_info_error = None
        self.add_consumer_error = None

    async def account_info(self):
        self.calls.append(("account_info",))
        if self.account_error is not None:
            raise self.account_error
        return SimpleNamespace(streams=len(self.streams))

    async def stream_info(self, name, subjects_filter=None):
        self.calls.append(("stream_info", name))
        if self.stream_info_error is not None:
            raise self.stream_info_error
        if name not in self.streams:
            raise NotFoundError()
        return SimpleNamespace(config=self.streams[name])

    async def add_stream(self, config=None, **params):
        self.calls.append(("add_stream", config.name))
        if self.add_stream_error is not None:
            raise self.add_stream_error
        self.streams[config.name] = config
        return SimpleNamespace(config=config)

    async def update_stream(self, config=None, **params):
        self.calls.append(("update_stream", config.name))
        if self.update_stream_error is not None:
            raise self.update_stream_error
        self.streams[config.name] = config
        return SimpleNamespace(config=config)

    async def consumer_info(self, stream, consumer, timeout=None):
        self.calls.append(("consumer_info", stream, consumer))
        if self.consumer_info_error is not None:
            raise self.consumer_info_error
        if (stream, consumer) not in self.consumers:
            raise NotFoundError()
        return SimpleNamespace(config=self.consumers[(stream, consumer)])

    async def add_consumer(self, stream, config=None, timeout=None, **params):
        self.calls.append(("add_consumer", stream, config.durable_name))
        if self.add_consumer_error is not None:
            raise self.add_consumer_error
        self.consumers[(stream, config.durable_name)] = config
        return SimpleNamespace(config=config)

    def count(self, name):
        return sum(1 for call in self.calls if call[0] == name)


class FakePullSub:
    """Pull subscription fed by `deliver()`."""

    def __init__(self, durable="", stream=""):
        self.durable = durable
        self.stream = stream
        self.queue = asyncio.Queue()
        self.fetch_errors = []
        self.unsubscribed = 0

    def deliver(self, msg):
        self.queue.put_nowait(msg)

    async def fetch(self, batch=1, timeout=5):
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        try:
            first = await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            raise NatsTimeoutError
        messages = [first]
        while len(messages) < batch and not self.queue.empty():
            messages.append(self.queue.get_nowait())
        return messages

    async def unsubscribe(self):
        self.unsubscribed += 1


class FakeJs:
    """JetStream context: durable publishes and pull subscription binding."""

    def __init__(self):
        self.published = []
        self.publish_error = None
        self.bind_error = None
        self.pull_subs = []

    async def publish(self, subject, payload=b"", timeout=None, stream=None, headers=None):
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((subject, payload, stream))
        return SimpleNamespace(stream=stream, seq=len(self.published))

    async def pull_subscribe_bind(self, durable, stream):
        if self.bind_error is not None:
            raise self.bind_error
        psub = FakePullSub(durable, stream)
        self.pull_subs.append(psub)
        return psub


class FakeNc:
    """Caller-owned connection; tracks core publishes and close calls."""

    def __init__(self):
        self.jsm_obj = FakeJsm()
        self.js_obj = FakeJs()
        self.published = []
        self.publish_error = None
        self.close_calls = 0

    def jsm(self, **opts):
        return self.jsm_obj

    def jetstream(self, **opts):
        return self.js_obj

    async def publish(self, subject, payload=b"", reply="", headers=None):
        if self.publish_error is not None:
            raise self.publish_error
        self.published.append((subject, payload, headers))

    async def close(self):
        self.close_calls += 1


class FakeMsg:
    """Delivered JetStream message recording its settlement."""

    def __init__(self, subject, data, num_delivered=1):
        self.subject = subject
        self.data = data
        self.metadata = SimpleNamespace(num_delivered=num_delivered)
        self.settled = []
        self.nak_delays = []

    async def ack(self):
        self.settled.append("ack")

    async def nak(self, delay=None):
        self.settled.append("nak")
        self.nak_delays.append(delay)

    async def term(self):
        self.settled.append("term")

    def redeliver(self):
        return FakeMsg(self.subject, self.data, self.metadata.num_delivered + 1)


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def key_bytes():
    return KEY_BYTES


@pytest.fixture
def identity(key_bytes):
    return IdentityKey(key_bytes)


@pytest.fixture
def fake_nc():
    return FakeNc()


@pytest.fixture
def settings():
    return MpciumSettings(fetch_timeout=0.05, retry_backoff=0.0, request_timeout=1.0)
