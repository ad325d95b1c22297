"""
Signed request publishing with a durable path and a best-effort fallback.

The path is chosen per request by `RequestPublisher.select()`:

- `DurablePublish`: the request stream is provisioned and the broker
  acknowledges persistence (the message survives until a node consumes it).
- `BestEffortPublish`: plain fire-and-forget publish on the same subject.

Falling back never raises. It emits one `PublishDegradedWarning`; the caller
still gets the correlation id and detects non-delivery by result timeout.
"""

import logging
import uuid
import warnings
from typing import Any, Dict, Optional, Type

from ..exceptions import ProvisionError, PublishDegradedWarning
from ..identity.key import IdentityKey
from ..messages import GenerateKeyMessage, ResharingMessage, SignedMessage, SignTxMessage
from ..signer import attach_signature
from .provisioner import BROKER_ERRORS, StreamProvisioner
from .subjects import KEYGEN_REQUEST, RESHARE_REQUEST, SIGNING_REQUEST, RequestTopic

logger = logging.getLogger(__name__)

REQUEST_TOPICS: Dict[Type[SignedMessage], RequestTopic] = {
    GenerateKeyMessage: KEYGEN_REQUEST,
    SignTxMessage: SIGNING_REQUEST,
    ResharingMessage: RESHARE_REQUEST,
}


def new_correlation_id() -> str:
    return str(uuid.uuid4())


class DurablePublish:
    """Publish through JetStream and wait for the stream's storage ack."""

    durable = True

    def __init__(self, js, timeout: float):
        self._js = js
        self._timeout = timeout

    async def send(self, topic: RequestTopic, subject: str, payload: bytes) -> None:
        await self._js.publish(subject, payload, timeout=self._timeout, stream=topic.stream.name)


class BestEffortPublish:
    """Core publish with no persistence guarantee."""

    durable = False

    def __init__(self, nc):
        self._nc = nc

    async def send(self, topic: RequestTopic, subject: str, payload: bytes) -> None:
        await self._nc.publish(subject, payload)


class RequestPublisher:
    """Builds, signs and publishes request messages."""

    def __init__(
        self,
        nc,
        js,
        provisioner: StreamProvisioner,
        identity: IdentityKey,
        request_timeout: float = 5.0,
    ):
        self._provisioner = provisioner
        self._identity = identity
        self.durable = DurablePublish(js, request_timeout)
        self.best_effort = BestEffortPublish(nc)

    async def select(self, topic: RequestTopic):
        """
        Pick the publish strategy for `topic`.

        A stream already confirmed in this process goes straight to the
        durable path. Otherwise one availability probe decides, followed by
        provisioning of the request stream.
        """
        if self._provisioner.is_stream_ready(topic.stream.name):
            return self.durable

        if not await self._provisioner.jetstream_available():
            self._degrade(topic, "JetStream is not available")
            return self.best_effort

        try:
            await self._provisioner.ensure_stream_descriptor(topic.stream)
        except ProvisionError as exc:
            self._degrade(topic, str(exc))
            return self.best_effort
        return self.durable

    async def publish(self, message_type: Type[SignedMessage], **fields: Any) -> str:
        """
        Build, sign and publish one request.

        Args:
            message_type: GenerateKeyMessage, SignTxMessage or ResharingMessage.
            **fields: Business fields. The correlation field is generated
                (uuid4) when missing or empty.

        Returns:
            str: The correlation id (wallet id, tx id or session id).
        """
        topic = REQUEST_TOPICS[message_type]
        if not fields.get(message_type.CORRELATION_FIELD):
            fields[message_type.CORRELATION_FIELD] = new_correlation_id()

        message = attach_signature(message_type(**fields), self._identity)
        return await self.send(topic, message)

    async def send(self, topic: RequestTopic, message: SignedMessage) -> str:
        """Publish an already signed `message` and return its correlation id."""
        correlation_id = message.correlation_id
        subject = topic.subject_for(correlation_id)
        payload = message.to_wire()

        strategy = await self.select(topic)
        if strategy.durable:
            try:
                await strategy.send(topic, subject, payload)
                logger.info(f"{topic.operation} request sent durably for {correlation_id}")
                return correlation_id
            except BROKER_ERRORS as exc:
                self._provisioner.forget(topic.stream.name)
                self._degrade(topic, repr(exc))

        await self.best_effort.send(topic, subject, payload)
        logger.info(f"{topic.operation} request sent best-effort for {correlation_id}")
        return correlation_id

    def _degrade(self, topic: RequestTopic, reason: Optional[str]) -> None:
        message = f"Durable publish unavailable for {topic.operation} ({reason}); falling back to best-effort"
        logger.warning(message)
        warnings.warn(message, PublishDegradedWarning, stacklevel=3)
