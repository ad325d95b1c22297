import base64
import json
import warnings

import pytest
from nats.errors import ConnectionClosedError, NoRespondersError
from nats.js.errors import APIError
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from mpcium_sdk.broker.provisioner import StreamProvisioner
from mpcium_sdk.broker.publisher import RequestPublisher
from mpcium_sdk.exceptions import PublishDegradedWarning
from mpcium_sdk.messages import GenerateKeyMessage, ResharingMessage, SignTxMessage


def _publisher(fake_nc, identity):
    provisioner = StreamProvisioner(fake_nc.jsm(), timeout=1.0)
    return RequestPublisher(fake_nc, fake_nc.jetstream(), provisioner, identity, request_timeout=1.0)


def _degraded(records):
    return [w for w in records if issubclass(w.category, PublishDegradedWarning)]


@pytest.mark.asyncio
async def test_durable_publish_provisions_request_stream(fake_nc, identity):
    publisher = _publisher(fake_nc, identity)

    with warnings.catch_warnings(record=True) as records:
        warnings.simplefilter("always")
        wallet_id = await publisher.publish(GenerateKeyMessage, wallet_id="w1")

    assert wallet_id == "w1"
    assert not _degraded(records)
    assert "mpc-keygen" in fake_nc.jsm_obj.streams
    subject, payload, stream = fake_nc.js_obj.published[0]
    assert subject == "mpc.keygen_request.w1"
    assert stream == "mpc-keygen"
    assert fake_nc.published == []

    body = json.loads(payload)
    assert list(body) == ["wallet_id", "signature"]
    Ed25519PublicKey.from_public_bytes(identity.public_key).verify(
        base64.b64decode(body["signature"]), b"w1"
    )


@pytest.mark.asyncio
async def test_confirmed_stream_skips_the_probe(fake_nc, identity):
    publisher = _publisher(fake_nc, identity)

    await publisher.publish(SignTxMessage, key_type="ed25519", wallet_id="w1",
                            network_internal_code="sol", tx="AQID")
    await publisher.publish(SignTxMessage, key_type="ed25519", wallet_id="w1",
                            network_internal_code="sol", tx="AQID")

    assert fake_nc.jsm_obj.count("account_info") == 1
    assert len(fake_nc.js_obj.published) == 2


@pytest.mark.asyncio
async def test_unavailable_jetstream_degrades_with_one_warning(fake_nc, identity):
    fake_nc.jsm_obj.account_error = NoRespondersError()
    publisher = _publisher(fake_nc, identity)

    with warnings.catch_warnings(record=True) as records:
        warnings.simplefilter("always")
        session_id = await publisher.publish(
            ResharingMessage,
            node_ids=["n1", "n2"],
            new_threshold=1,
            key_type="secp256k1",
            wallet_id="w1",
        )

    assert session_id
    assert len(_degraded(records)) == 1
    assert fake_nc.js_obj.published == []
    subject, payload, _ = fake_nc.published[0]
    assert subject == f"mpc.reshare_request.{session_id}"
    assert json.loads(payload)["session_id"] == session_id


@pytest.mark.asyncio
async def test_failed_durable_publish_falls_back_once(fake_nc, identity):
    fake_nc.js_obj.publish_error = NoRespondersError()
    publisher = _publisher(fake_nc, identity)

    with warnings.catch_warnings(record=True) as records:
        warnings.simplefilter("always")
        wallet_id = await publisher.publish(GenerateKeyMessage)

    assert len(_degraded(records)) == 1
    assert fake_nc.published[0][0] == f"mpc.keygen_request.{wallet_id}"
    # The stream mark is dropped so the next request probes again.
    assert not publisher._provisioner.is_stream_ready("mpc-keygen")


@pytest.mark.asyncio
async def test_provision_failure_falls_back_once(fake_nc, identity):
    fake_nc.jsm_obj.add_stream_error = APIError(code=403, err_code=10039, description="permission denied")
    publisher = _publisher(fake_nc, identity)

    with pytest.warns(PublishDegradedWarning) as records:
        await publisher.publish(GenerateKeyMessage, wallet_id="w1")

    assert len(_degraded(records)) == 1
    assert fake_nc.published[0][0] == "mpc.keygen_request.w1"


@pytest.mark.asyncio
async def test_best_effort_failure_reaches_the_caller(fake_nc, identity):
    fake_nc.jsm_obj.account_error = NoRespondersError()
    fake_nc.publish_error = ConnectionClosedError()
    publisher = _publisher(fake_nc, identity)

    with pytest.warns(PublishDegradedWarning):
        with pytest.raises(ConnectionClosedError):
            await publisher.publish(GenerateKeyMessage, wallet_id="w1")


@pytest.mark.asyncio
async def test_caller_supplied_correlation_id_is_kept(fake_nc, identity):
    publisher = _publisher(fake_nc, identity)

    tx_id = await publisher.publish(
        SignTxMessage,
        key_type="ed25519",
        wallet_id="w1",
        network_internal_code="sol",
        tx_id="tx-42",
        tx="AQID",
    )

    assert tx_id == "tx-42"
    assert fake_nc.js_obj.published[0][0] == "mpc.signing_request.tx-42"
