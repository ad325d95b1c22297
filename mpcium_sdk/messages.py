"""
Request messages sent to the MPC node cluster and the result events it returns.

Field declaration order on the request models is the order the remote
verifier re-encodes before checking the signature. `SIGNED_FIELDS` pins it
explicitly; do not reorder either.
"""

import base64
import binascii
import json
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import DecodeError


class KeyType(str, Enum):
    """Curve of the threshold key held by the node cluster"""
    SECP256K1 = "secp256k1"
    ED25519 = "ed25519"


class ResultType(str, Enum):
    """Outcome discriminator carried by every result event"""
    SUCCESS = "success"
    ERROR = "error"


# --------------------------------------------------------------------------- #
# Requests
# --------------------------------------------------------------------------- #


class SignedMessage(BaseModel):
    """Base for requests: immutable business fields plus a trailing signature."""

    model_config = {"frozen": True}

    # Fields fed to the canonical encoding, in wire order.
    SIGNED_FIELDS: ClassVar[Tuple[str, ...]] = ()
    # When set, the signature covers this single field's raw UTF-8 text
    # instead of a JSON object.
    RAW_SIGNED_FIELD: ClassVar[Optional[str]] = None
    CORRELATION_FIELD: ClassVar[str] = ""

    @property
    def correlation_id(self) -> str:
        return getattr(self, self.CORRELATION_FIELD)

    def signed_values(self) -> Dict[str, Any]:
        """Signed fields in wire order, JSON-ready (enums as their values)."""
        dumped = self.model_dump(mode="json")
        return {name: dumped[name] for name in self.SIGNED_FIELDS}

    def to_wire(self) -> bytes:
        """Full message body, signature last."""
        body = self.signed_values()
        if self.signature is not None:
            body["signature"] = self.signature
        return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class GenerateKeyMessage(SignedMessage):
    """Request the cluster to generate a new wallet"""
    wallet_id: str = Field(..., min_length=1)
    signature: Optional[str] = Field(None, description="base64 Ed25519 signature")

    SIGNED_FIELDS: ClassVar[Tuple[str, ...]] = ("wallet_id",)
    RAW_SIGNED_FIELD: ClassVar[Optional[str]] = "wallet_id"
    CORRELATION_FIELD: ClassVar[str] = "wallet_id"


class SignTxMessage(SignedMessage):
    """Request a threshold signature over a transaction"""
    key_type: KeyType
    wallet_id: str = Field(..., min_length=1)
    network_internal_code: str
    tx_id: str = Field(..., min_length=1)
    tx: str = Field(..., description="base64 of the raw transaction bytes")
    signature: Optional[str] = Field(None, description="base64 Ed25519 signature")

    SIGNED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "key_type",
        "wallet_id",
        "network_internal_code",
        "tx_id",
        "tx",
    )
    CORRELATION_FIELD: ClassVar[str] = "tx_id"


class ResharingMessage(SignedMessage):
    """Request a reshare of a wallet's key to a new node set / threshold"""
    session_id: str = Field(..., min_length=1)
    node_ids: List[str]
    new_threshold: int = Field(..., ge=1)
    key_type: KeyType
    wallet_id: str = Field(..., min_length=1)
    signature: Optional[str] = Field(None, description="base64 Ed25519 signature")

    SIGNED_FIELDS: ClassVar[Tuple[str, ...]] = (
        "session_id",
        "node_ids",
        "new_threshold",
        "key_type",
        "wallet_id",
    )
    CORRELATION_FIELD: ClassVar[str] = "session_id"


# --------------------------------------------------------------------------- #
# Results
# --------------------------------------------------------------------------- #

E = TypeVar("E", bound="ResultEvent")


def _b64_to_bytes(value: Any) -> Optional[bytes]:
    if value is None or value == "":
        return None
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"invalid base64 field: {exc}") from exc
    raise ValueError(f"expected base64 string, got {type(value).__name__}")


class ResultEvent(BaseModel):
    """Base for results delivered on the durable result stream."""

    model_config = {"frozen": True, "extra": "ignore"}

    result_type: ResultType
    error_code: Optional[str] = None
    error_reason: Optional[str] = None

    CORRELATION_FIELD: ClassVar[str] = "wallet_id"

    @field_validator("error_code", mode="before")
    @classmethod
    def _stringify_code(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @property
    def succeeded(self) -> bool:
        return self.result_type == ResultType.SUCCESS

    @property
    def correlation_id(self) -> str:
        return getattr(self, self.CORRELATION_FIELD)

    @classmethod
    def decode(cls: type[E], data: bytes) -> E:
        """Decode a delivered payload, raising DecodeError on any malformation."""
        try:
            return cls.model_validate_json(data)
        except ValidationError as exc:
            raise DecodeError(f"Malformed {cls.__name__} payload: {exc}") from exc


class KeygenResult(ResultEvent):
    """Wallet creation outcome"""
    wallet_id: str
    ecdsa_pub_key: Optional[bytes] = None
    eddsa_pub_key: Optional[bytes] = None

    @field_validator("ecdsa_pub_key", "eddsa_pub_key", mode="before")
    @classmethod
    def _decode_keys(cls, value: Any) -> Optional[bytes]:
        return _b64_to_bytes(value)


class SigningResult(ResultEvent):
    """Transaction signing outcome"""
    wallet_id: str
    tx_id: str
    network_internal_code: str = ""
    r: Optional[bytes] = None
    s: Optional[bytes] = None
    signature_recovery: Optional[bytes] = None
    signature: Optional[bytes] = None
    is_timeout: bool = False

    CORRELATION_FIELD: ClassVar[str] = "tx_id"

    @field_validator("r", "s", "signature_recovery", "signature", mode="before")
    @classmethod
    def _decode_signature(cls, value: Any) -> Optional[bytes]:
        return _b64_to_bytes(value)


class ResharingResult(ResultEvent):
    """Key resharing outcome"""
    wallet_id: str
    session_id: Optional[str] = None
    new_threshold: int = 0
    key_type: Optional[KeyType] = None
    pub_key: Optional[bytes] = None

    @field_validator("pub_key", mode="before")
    @classmethod
    def _decode_pub_key(cls, value: Any) -> Optional[bytes]:
        return _b64_to_bytes(value)

    @property
    def correlation_id(self) -> str:
        return self.session_id or self.wallet_id
