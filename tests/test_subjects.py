import pytest

from mpcium_sdk.broker.subjects import (
    KEYGEN_REQUEST,
    RESHARE_REQUEST,
    RESULT_STREAM,
    SIGNING_REQUEST,
    ResultCategory,
)


@pytest.mark.parametrize(
    "topic, subject, stream",
    [
        (KEYGEN_REQUEST, "mpc.keygen_request.id1", "mpc-keygen"),
        (SIGNING_REQUEST, "mpc.signing_request.id1", "mpc-signing"),
        (RESHARE_REQUEST, "mpc.reshare_request.id1", "mpc-reshare"),
    ],
)
def test_request_topics_use_dotted_work_queue_subjects(topic, subject, stream):
    assert topic.subject_for("id1") == subject
    assert topic.stream.name == stream
    assert topic.stream.subjects == (f"{topic.subject_prefix}.*",)


def test_result_stream_covers_every_category():
    assert set(RESULT_STREAM.subjects) == {category.filter_subject for category in ResultCategory}
