"""
Result consumption: decode, invoke the caller's callback, settle the message.

Per delivered message:

    received -> decode --fail--> TERM (callback never runs)
             -> callback --ok--> ACK
                         --raises--> NAK (redelivered up to max_deliver)

On the last permitted delivery a failing callback is resolved by the
configured `ExhaustedPolicy` instead of a plain NAK.
"""

import asyncio
import collections
import contextlib
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Type, Union

from ..config import ExhaustedPolicy, MpciumSettings
from ..exceptions import CallbackError, DecodeError
from ..messages import ResultEvent
from .provisioner import BROKER_ERRORS
from .subjects import ResultCategory

logger = logging.getLogger(__name__)

ResultCallback = Callable[[Any], Union[None, Awaitable[None]]]

ORIGINAL_SUBJECT_HEADER = "Mpcium-Original-Subject"
DELIVERY_COUNT_HEADER = "Mpcium-Delivery-Count"


class Disposition(str, Enum):
    """Terminal outcome of one delivery attempt"""
    ACK = "ack"
    NAK = "nak"
    TERM = "term"


async def dispatch(
    data: bytes,
    event_type: Type[ResultEvent],
    callback: ResultCallback,
    category: str,
    subject: str = "",
) -> Disposition:
    """
    Decode `data` and hand the event to `callback`.

    Never raises for decode or callback failures; both are reported through
    logging and reflected in the returned disposition.
    """
    try:
        event = event_type.decode(data)
    except DecodeError as exc:
        logger.error(f"Dropping undecodable {category} result on {subject}: {exc}")
        return Disposition.TERM

    try:
        outcome = callback(event)
        if inspect.isawaitable(outcome):
            await outcome
    except Exception as exc:
        error = CallbackError(category, event.correlation_id, exc)
        logger.warning(f"{error}; message will be redelivered")
        return Disposition.NAK

    return Disposition.ACK


def delivery_count(msg) -> int:
    """Broker delivery counter of `msg` (1 on the first attempt)."""
    try:
        return int(msg.metadata.num_delivered)
    except (AttributeError, TypeError, ValueError) + BROKER_ERRORS:
        return 1


class ResultConsumer:
    """Processes messages of one result category and settles them with the broker."""

    def __init__(
        self,
        nc,
        category: ResultCategory,
        callback: ResultCallback,
        settings: MpciumSettings,
    ):
        self._nc = nc
        self.category = category
        self._callback = callback
        self._settings = settings

    async def handle(self, msg) -> Disposition:
        disposition = await dispatch(
            msg.data,
            self.category.event_type,
            self._callback,
            self.category.value,
            msg.subject,
        )
        if disposition is Disposition.NAK and self.is_exhausted(msg):
            disposition = await self._on_exhausted(msg)
        await self._settle(msg, disposition)
        return disposition

    def is_exhausted(self, msg) -> bool:
        return delivery_count(msg) >= self._settings.max_deliver

    async def _on_exhausted(self, msg) -> Disposition:
        policy = self._settings.exhausted_policy
        logger.error(
            f"{self.category.value} result on {msg.subject} failed on final delivery "
            f"{delivery_count(msg)}/{self._settings.max_deliver}; applying {policy.value} policy"
        )
        if policy == ExhaustedPolicy.TERMINATE:
            return Disposition.TERM
        if policy == ExhaustedPolicy.DEAD_LETTER:
            return await self._dead_letter(msg)
        return Disposition.NAK

    async def _dead_letter(self, msg) -> Disposition:
        headers = {
            ORIGINAL_SUBJECT_HEADER: msg.subject,
            DELIVERY_COUNT_HEADER: str(delivery_count(msg)),
        }
        try:
            await self._nc.publish(self._settings.dead_letter_subject, msg.data, headers=headers)
        except BROKER_ERRORS as exc:
            logger.error(f"Dead-letter publish to {self._settings.dead_letter_subject} failed: {exc!r}")
            return Disposition.NAK
        return Disposition.TERM

    async def _settle(self, msg, disposition: Disposition) -> None:
        try:
            if disposition is Disposition.ACK:
                await msg.ack()
            elif disposition is Disposition.TERM:
                await msg.term()
            elif self._settings.nak_delay is not None:
                await msg.nak(delay=self._settings.nak_delay)
            else:
                await msg.nak()
        except BROKER_ERRORS as exc:
            logger.error(f"Failed to {disposition.value} {self.category.value} result on {msg.subject}: {exc!r}")


class ResultSubscription:
    """
    Handle for one running pull loop over a durable result consumer.

    The loop runs as an asyncio task until `stop()`; stopping naks whatever
    part of the current batch was not handled yet, releases the pull
    subscription and leaves the durable consumer on the broker.
    """

    def __init__(self, consumer: ResultConsumer, psub, settings: MpciumSettings):
        self._consumer = consumer
        self._psub = psub
        self._batch = settings.fetch_batch
        self._fetch_timeout = settings.fetch_timeout
        self._retry_backoff = settings.retry_backoff
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._released = False

    @property
    def category(self) -> ResultCategory:
        return self._consumer.category

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def released(self) -> bool:
        return self._released

    def start(self) -> "ResultSubscription":
        if self._released:
            raise RuntimeError("Subscription already stopped")
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"mpcium-{self.category.value}")
            logger.info(f"Subscribed to {self.category.value} results")
        return self

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                messages = await self._psub.fetch(self._batch, timeout=self._fetch_timeout)
            except asyncio.TimeoutError:
                continue
            except Exception as exc:
                logger.error(f"Pull from {self.category.value} failed: {exc!r}; retrying in {self._retry_backoff}s")
                await asyncio.sleep(self._retry_backoff)
                continue

            pending = collections.deque(messages)
            try:
                while pending and not self._stopping.is_set():
                    try:
                        await self._consumer.handle(pending[0])
                    except Exception as exc:
                        logger.error(f"Unexpected error handling {self.category.value} result: {exc!r}")
                    pending.popleft()
            finally:
                # Fetched but unhandled messages go straight back for redelivery.
                await self._release_pending(pending)

    async def _release_pending(self, pending) -> None:
        if not pending:
            return
        logger.info(f"Returning {len(pending)} unprocessed {self.category.value} results to the broker")
        for msg in pending:
            try:
                await msg.nak()
            except BROKER_ERRORS as exc:
                logger.warning(f"Failed to nak {self.category.value} result on {msg.subject}: {exc!r}")

    async def stop(self) -> None:
        """Stop the pull loop and release the pull subscription. Safe to call twice."""
        if self._released:
            return
        self._released = True
        self._stopping.set()

        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

        try:
            await self._psub.unsubscribe()
        except BROKER_ERRORS as exc:
            logger.warning(f"Error releasing {self.category.value} pull subscription: {exc!r}")
        logger.info(f"Stopped {self.category.value} subscription")
