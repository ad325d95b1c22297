"""
Broker topology shared with the MPC node cluster: subjects, streams and
durable consumer names.

Targets mpcium node clusters that consume all three request kinds from
JetStream work-queue streams on dot-separated `mpc.<kind>_request.<id>`
subjects, reshare included (`mpc-reshare` stream, subject
`mpc.reshare_request.<session_id>`). Older node releases that read reshare
requests from the core NATS subject `mpc:reshare` do not see reshare requests
sent by this client.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Type

from ..messages import KeygenResult, ResharingResult, ResultEvent, SigningResult


@dataclass(frozen=True)
class StreamDescriptor:
    """A durable stream the client may need to provision."""
    name: str
    subjects: Tuple[str, ...]


@dataclass(frozen=True)
class RequestTopic:
    """Where one request variant is published."""
    operation: str
    subject_prefix: str
    stream: StreamDescriptor

    def subject_for(self, correlation_id: str) -> str:
        return f"{self.subject_prefix}.{correlation_id}"


KEYGEN_REQUEST = RequestTopic(
    operation="generate-key",
    subject_prefix="mpc.keygen_request",
    stream=StreamDescriptor("mpc-keygen", ("mpc.keygen_request.*",)),
)
SIGNING_REQUEST = RequestTopic(
    operation="sign-tx",
    subject_prefix="mpc.signing_request",
    stream=StreamDescriptor("mpc-signing", ("mpc.signing_request.*",)),
)
RESHARE_REQUEST = RequestTopic(
    operation="reshare",
    subject_prefix="mpc.reshare_request",
    stream=StreamDescriptor("mpc-reshare", ("mpc.reshare_request.*",)),
)

KEYGEN_RESULT_SUBJECT = "mpc.mpc_keygen_result.*"
SIGNING_RESULT_SUBJECT = "mpc.mpc_signing_result.*"
RESHARE_RESULT_SUBJECT = "mpc.mpc_reshare_result.*"

# One stream carries every result category; each category reads it through
# its own filtered durable consumer.
RESULT_STREAM = StreamDescriptor(
    "mpc",
    (KEYGEN_RESULT_SUBJECT, SIGNING_RESULT_SUBJECT, RESHARE_RESULT_SUBJECT),
)


class ResultCategory(str, Enum):
    """Result families, each with an independent durable consumer."""
    KEYGEN = "mpc_keygen_result"
    SIGNING = "mpc_signing_result"
    RESHARE = "mpc_reshare_result"

    @property
    def durable_name(self) -> str:
        return self.value

    @property
    def filter_subject(self) -> str:
        return _FILTERS[self]

    @property
    def event_type(self) -> Type[ResultEvent]:
        return _EVENTS[self]


_FILTERS = {
    ResultCategory.KEYGEN: KEYGEN_RESULT_SUBJECT,
    ResultCategory.SIGNING: SIGNING_RESULT_SUBJECT,
    ResultCategory.RESHARE: RESHARE_RESULT_SUBJECT,
}

_EVENTS = {
    ResultCategory.KEYGEN: KeygenResult,
    ResultCategory.SIGNING: SigningResult,
    ResultCategory.RESHARE: ResharingResult,
}
