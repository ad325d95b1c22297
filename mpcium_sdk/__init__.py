from __future__ import annotations

from pathlib import Path
from importlib.metadata import PackageNotFoundError, version as _dist_version

from .broker.connection import status_callbacks
from .broker.consumer import Disposition, ResultSubscription
from .client import MpciumClient
from .config import ExhaustedPolicy, MpciumSettings
from .exceptions import (
    CallbackError,
    ClientClosedError,
    DecodeError,
    KeyLoadError,
    MpciumConfigurationError,
    MpciumError,
    ProvisionError,
    PublishDegradedWarning,
    SigningError,
)
from .identity import IdentityKey, encrypt_private_key, load, load_identity
from .messages import (
    GenerateKeyMessage,
    KeygenResult,
    KeyType,
    ResharingMessage,
    ResharingResult,
    ResultType,
    SigningResult,
    SignTxMessage,
)
from .signer import canonical_bytes, sign, verify


def _read_local_pyproject_version() -> str | None:
    """Attempt to read version from local pyproject when running from source.

    Returns None if pyproject.toml is missing or cannot be parsed.
    """
    pyproject_path = Path(__file__).resolve().parents[1] / "pyproject.toml"
    if not pyproject_path.exists():
        return None

    try:
        import tomllib  # Python 3.11+
    except ImportError:
        return None

    try:
        with pyproject_path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return None
    version = data.get("project", {}).get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    return None


def _resolve_version() -> str:
    # Prefer installed distribution metadata when available
    try:
        return _dist_version("mpcium-sdk")
    except PackageNotFoundError:
        pass

    # Fallback: read from local pyproject when running from source
    return _read_local_pyproject_version() or "0.0.0"


__version__ = _resolve_version()

__all__ = [
    "__version__",
    "MpciumClient",
    "MpciumSettings",
    "ExhaustedPolicy",
    "status_callbacks",
    "Disposition",
    "ResultSubscription",
    "IdentityKey",
    "load",
    "load_identity",
    "encrypt_private_key",
    "canonical_bytes",
    "sign",
    "verify",
    "KeyType",
    "ResultType",
    "GenerateKeyMessage",
    "SignTxMessage",
    "ResharingMessage",
    "KeygenResult",
    "SigningResult",
    "ResharingResult",
    "MpciumError",
    "MpciumConfigurationError",
    "KeyLoadError",
    "SigningError",
    "ProvisionError",
    "DecodeError",
    "CallbackError",
    "ClientClosedError",
    "PublishDegradedWarning",
]
