"""
MpciumClient: signed requests to an MPC node cluster and durable result delivery.

The client borrows an already connected NATS connection and never closes it.

Example:
    nc = await nats.connect("nats://localhost:4222", **status_callbacks())
    async with MpciumClient.create(nc, key_path="./event_initiator.key") as client:
        await client.on_wallet_creation_result(handle_wallet)
        wallet_id = await client.create_wallet()
"""

import asyncio
import base64
import logging
from typing import List, Optional, Sequence, Union

from .broker.consumer import ResultCallback, ResultConsumer, ResultSubscription
from .broker.provisioner import BROKER_ERRORS, StreamProvisioner
from .broker.publisher import RequestPublisher
from .broker.subjects import RESULT_STREAM, ResultCategory
from .config import MpciumSettings
from .exceptions import ClientClosedError, ProvisionError
from .identity.key import IdentityKey
from .identity.loader import load_identity
from .messages import GenerateKeyMessage, KeyType, ResharingMessage, SignTxMessage

logger = logging.getLogger(__name__)


class MpciumClient:
    """
    Client for wallet creation, transaction signing and key resharing.

    Request operations return the correlation id as soon as the request is
    published; results arrive later through the `on_*_result` subscriptions.
    """

    def __init__(
        self,
        nc,
        identity: IdentityKey,
        settings: Optional[MpciumSettings] = None,
    ):
        self._nc = nc
        self._identity = identity
        self._settings = settings or MpciumSettings()

        timeout = self._settings.request_timeout
        self._js = nc.jetstream(timeout=timeout)
        self._provisioner = StreamProvisioner(
            nc.jsm(timeout=timeout),
            max_bytes=self._settings.stream_max_bytes,
            timeout=timeout,
        )
        self._publisher = RequestPublisher(nc, self._js, self._provisioner, identity, timeout)

        self._subscriptions: List[ResultSubscription] = []
        self._lock = asyncio.Lock()
        self._closed = False

    @classmethod
    def create(cls, nc, settings: Optional[MpciumSettings] = None, **overrides) -> "MpciumClient":
        """
        Load the identity key described by `settings` and build a client.

        Args:
            nc: Connected NATS client.
            settings: Resolved settings; loaded from the environment when None.
            **overrides: Settings fields overriding `settings` or the environment.

        Returns:
            MpciumClient

        Raises:
            KeyLoadError: The key file is missing, undecryptable or malformed.
            MpciumConfigurationError: `settings` merged with `overrides` is invalid.
        """
        if settings is None:
            settings = MpciumSettings.load(**overrides)
        elif overrides:
            settings = settings.replace(**overrides)

        identity = load_identity(
            settings.key_path,
            passphrase=settings.key_password,
            encrypted=settings.key_encrypted,
        )
        logger.info(f"Loaded identity key from {settings.key_path}")
        return cls(nc, identity, settings)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def settings(self) -> MpciumSettings:
        return self._settings

    @property
    def subscriptions(self) -> List[ResultSubscription]:
        return list(self._subscriptions)

    async def __aenter__(self) -> "MpciumClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cleanup()

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClientClosedError("MpciumClient has been cleaned up")

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    async def create_wallet(self, wallet_id: Optional[str] = None) -> str:
        """Request a new wallet. Returns the wallet id (generated when omitted)."""
        self._ensure_open()
        return await self._publisher.publish(GenerateKeyMessage, wallet_id=wallet_id)

    async def sign_transaction(
        self,
        wallet_id: str,
        key_type: Union[KeyType, str],
        network_internal_code: str,
        tx: Union[bytes, str],
        tx_id: Optional[str] = None,
    ) -> str:
        """
        Request a threshold signature over `tx`.

        Args:
            wallet_id: Wallet whose key signs.
            key_type: Curve of that wallet's key.
            network_internal_code: Chain identifier understood by the nodes.
            tx: Raw transaction bytes, or their base64 text.
            tx_id: Correlation id; generated when omitted.

        Returns:
            str: The transaction id carried by the SigningResult.
        """
        self._ensure_open()
        if isinstance(tx, (bytes, bytearray)):
            tx = base64.b64encode(bytes(tx)).decode("ascii")
        return await self._publisher.publish(
            SignTxMessage,
            key_type=key_type,
            wallet_id=wallet_id,
            network_internal_code=network_internal_code,
            tx_id=tx_id,
            tx=tx,
        )

    async def reshare_keys(
        self,
        wallet_id: str,
        node_ids: Sequence[str],
        new_threshold: int,
        key_type: Union[KeyType, str],
        session_id: Optional[str] = None,
    ) -> str:
        """Request a reshare of `wallet_id` to `node_ids`. Returns the session id."""
        self._ensure_open()
        return await self._publisher.publish(
            ResharingMessage,
            session_id=session_id,
            node_ids=list(node_ids),
            new_threshold=new_threshold,
            key_type=key_type,
            wallet_id=wallet_id,
        )

    # ------------------------------------------------------------------ #
    # Results
    # ------------------------------------------------------------------ #

    async def on_wallet_creation_result(self, callback: ResultCallback) -> ResultSubscription:
        return await self._subscribe(ResultCategory.KEYGEN, callback)

    async def on_sign_result(self, callback: ResultCallback) -> ResultSubscription:
        return await self._subscribe(ResultCategory.SIGNING, callback)

    async def on_resharing_result(self, callback: ResultCallback) -> ResultSubscription:
        return await self._subscribe(ResultCategory.RESHARE, callback)

    async def _subscribe(self, category: ResultCategory, callback: ResultCallback) -> ResultSubscription:
        async with self._lock:
            self._ensure_open()
            await self._provisioner.ensure_stream_descriptor(RESULT_STREAM)
            await self._provisioner.ensure_consumer(
                RESULT_STREAM.name,
                category.durable_name,
                category.filter_subject,
                max_deliver=self._settings.max_deliver,
            )
            try:
                psub = await self._js.pull_subscribe_bind(category.durable_name, RESULT_STREAM.name)
            except BROKER_ERRORS as exc:
                raise ProvisionError(
                    f"Failed to bind to consumer {category.durable_name}: {exc!r}",
                    resource=category.durable_name,
                ) from exc
            consumer = ResultConsumer(self._nc, category, callback, self._settings)
            subscription = ResultSubscription(consumer, psub, self._settings).start()
            self._subscriptions.append(subscription)
            return subscription

    async def cleanup(self) -> None:
        """Stop every open subscription and wipe the identity key. Idempotent."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            subscriptions, self._subscriptions = self._subscriptions, []

        for subscription in subscriptions:
            await subscription.stop()
        self._identity.wipe()
        logger.info(f"Cleaned up {len(subscriptions)} subscription(s)")
