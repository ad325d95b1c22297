"""
Idempotent provisioning of durable streams and consumers.

Several clients (or several client instances in one process) race to create
the same broker resources. Every operation here has "ensure exists" semantics:
look up first, create when absent, and treat an "already exists" answer to the
create as success. Any other failure surfaces as ProvisionError.
"""

import asyncio
import dataclasses
import logging
from typing import Iterable, Optional, Set, Tuple

from nats.errors import Error as NatsError
from nats.js.api import AckPolicy, ConsumerConfig, RetentionPolicy, StreamConfig
from nats.js.errors import APIError, NotFoundError

from ..exceptions import ProvisionError
from .subjects import StreamDescriptor

logger = logging.getLogger(__name__)

# JetStream API error codes meaning an equivalent resource is already there.
STREAM_NAME_IN_USE = 10058
STREAM_SUBJECT_OVERLAP = 10065
CONSUMER_NAME_IN_USE = 10013
CONSUMER_EXISTING_ACTIVE = 10105
CONSUMER_ALREADY_EXISTS = 10148

STREAM_EXISTS_CODES = frozenset({STREAM_NAME_IN_USE, STREAM_SUBJECT_OVERLAP})
CONSUMER_EXISTS_CODES = frozenset(
    {CONSUMER_NAME_IN_USE, CONSUMER_EXISTING_ACTIVE, CONSUMER_ALREADY_EXISTS}
)

BROKER_ERRORS: Tuple[type, ...] = (NatsError, asyncio.TimeoutError)

DEFAULT_MAX_BYTES = 100 * 1024 * 1024


class StreamProvisioner:
    """
    Ensures durable streams and consumers exist before the client uses them.

    Resources confirmed once are remembered for the provisioner's lifetime so
    repeated publishes and subscriptions skip the lookup round trip; call
    `forget()` when a later broker error suggests the resource went away.
    """

    def __init__(self, jsm, max_bytes: int = DEFAULT_MAX_BYTES, timeout: Optional[float] = None):
        self._jsm = jsm
        self._max_bytes = max_bytes
        self._timeout = timeout
        self._streams: Set[str] = set()
        self._consumers: Set[Tuple[str, str]] = set()

    async def jetstream_available(self) -> bool:
        """Single availability probe: can this connection talk to JetStream at all?"""
        try:
            await self._call(self._jsm.account_info())
            return True
        except BROKER_ERRORS as exc:
            logger.warning(f"JetStream is not available: {exc!r}")
            return False

    def is_stream_ready(self, name: str) -> bool:
        return name in self._streams

    def forget(self, stream_name: str) -> None:
        self._streams.discard(stream_name)
        self._consumers = {pair for pair in self._consumers if pair[0] != stream_name}

    async def ensure_stream(self, name: str, subjects: Iterable[str]) -> None:
        """
        Make sure stream `name` exists and captures `subjects`.

        Raises:
            ProvisionError: the stream is absent and could not be created for a
                reason other than an equivalent stream already existing, or it
                exists without some of `subjects` and the broker refused to add them.
        """
        subjects = list(subjects)
        if name in self._streams:
            return

        try:
            info = await self._call(self._jsm.stream_info(name))
        except NotFoundError:
            await self._create_stream(name, subjects)
        except BROKER_ERRORS as exc:
            raise ProvisionError(
                f"Failed to look up stream {name}: {exc!r}", resource=name
            ) from exc
        else:
            await self._extend_subjects(name, subjects, info)

        self._streams.add(name)

    async def ensure_stream_descriptor(self, descriptor: StreamDescriptor) -> None:
        await self.ensure_stream(descriptor.name, descriptor.subjects)

    async def ensure_consumer(
        self,
        stream_name: str,
        durable_name: str,
        filter_subject: str,
        max_deliver: int = 3,
    ) -> None:
        """
        Make sure the durable pull consumer `durable_name` exists on `stream_name`.

        The durable consumer outlives this client: it is never deleted here,
        so results published while no client is connected are kept for the
        next subscriber.

        Raises:
            ProvisionError: the consumer is absent and could not be created for
                a reason other than it already existing.
        """
        key = (stream_name, durable_name)
        if key in self._consumers:
            return

        try:
            await self._call(self._jsm.consumer_info(stream_name, durable_name))
            logger.debug(f"Durable consumer {durable_name} already present on {stream_name}")
        except NotFoundError:
            await self._create_consumer(stream_name, durable_name, filter_subject, max_deliver)
        except BROKER_ERRORS as exc:
            raise ProvisionError(
                f"Failed to look up consumer {durable_name}: {exc!r}", resource=durable_name
            ) from exc

        self._consumers.add(key)

    async def _create_stream(self, name: str, subjects: list) -> None:
        config = StreamConfig(
            name=name,
            subjects=subjects,
            retention=RetentionPolicy.WORK_QUEUE,
            max_bytes=self._max_bytes,
        )
        try:
            await self._call(self._jsm.add_stream(config=config))
            logger.info(f"Created {name} stream")
        except APIError as exc:
            if exc.err_code in STREAM_EXISTS_CODES:
                logger.warning(f"{name} stream already provisioned (err_code={exc.err_code}); proceeding")
                return
            raise ProvisionError(
                f"Failed to create stream {name}: {exc.description}",
                resource=name,
                err_code=exc.err_code,
            ) from exc
        except BROKER_ERRORS as exc:
            raise ProvisionError(f"Failed to create stream {name}: {exc!r}", resource=name) from exc

    async def _create_consumer(
        self, stream_name: str, durable_name: str, filter_subject: str, max_deliver: int
    ) -> None:
        config = ConsumerConfig(
            durable_name=durable_name,
            ack_policy=AckPolicy.EXPLICIT,
            filter_subject=filter_subject,
            max_deliver=max_deliver,
        )
        try:
            await self._call(self._jsm.add_consumer(stream_name, config=config))
            logger.info(f"Created durable consumer {durable_name} on {stream_name}")
        except APIError as exc:
            if exc.err_code in CONSUMER_EXISTS_CODES:
                logger.warning(f"Durable consumer {durable_name} already provisioned; proceeding")
                return
            raise ProvisionError(
                f"Failed to create consumer {durable_name}: {exc.description}",
                resource=durable_name,
                err_code=exc.err_code,
            ) from exc
        except BROKER_ERRORS as exc:
            raise ProvisionError(
                f"Failed to create consumer {durable_name}: {exc!r}", resource=durable_name
            ) from exc

    async def _extend_subjects(self, name: str, subjects: list, info) -> None:
        config = getattr(info, "config", None)
        if config is None:
            return
        existing = list(config.subjects or [])
        missing = [s for s in subjects if s not in existing]
        if not missing:
            return

        updated = dataclasses.replace(config, subjects=existing + missing)
        try:
            await self._call(self._jsm.update_stream(config=updated))
            logger.info(f"Added subjects {missing} to {name} stream")
        except APIError as exc:
            raise ProvisionError(
                f"Failed to add subjects {missing} to stream {name}: {exc.description}",
                resource=name,
                err_code=exc.err_code,
            ) from exc
        except BROKER_ERRORS as exc:
            raise ProvisionError(
                f"Failed to add subjects {missing} to stream {name}: {exc!r}", resource=name
            ) from exc

    async def _call(self, awaitable):
        if self._timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self._timeout)
