import logging

import openai

from stockmeta.domain.errors import (
    AuthError,
    BatchItemFailure,
    PoolExhaustedError,
    ProviderError,
    RateLimitedError,
    TransientNetworkError,
    is_credential_failure,
    status_code_of,
)
from stockmeta.domain.events import CredentialFailover, TaskStarted, dispatch_event
from stockmeta.domain.models.tasks import Task, TaskState


def test_dispatch_event_forwards_to_sink():
    received = []
    event = TaskStarted(index=3)

    dispatch_event(received.append, event)
    dispatch_event(None, event)

    assert received == [event]


def test_failing_sink_does_not_interrupt_dispatch(caplog):
    def broken_sink(event):
        raise RuntimeError("sink down")

    with caplog.at_level(logging.ERROR):
        dispatch_event(broken_sink, CredentialFailover("OpenAI", "cred-1", "RateLimitedError"))

    assert "sink down" in caplog.text


def test_status_code_of(http_response):
    assert status_code_of(RateLimitedError("x")) == 429
    assert status_code_of(ProviderError("x", status_code=503)) == 503
    assert status_code_of(openai.APIStatusError("x", response=http_response(402), body=None)) == 402
    assert status_code_of(TransientNetworkError("x")) is None
    assert status_code_of(ValueError("x")) is None


def test_credential_failure_detection(http_response):
    assert is_credential_failure(AuthError("x"))
    assert is_credential_failure(openai.RateLimitError("x", response=http_response(429), body=None))
    assert not is_credential_failure(ProviderError("x", status_code=500))
    assert not is_credential_failure(TransientNetworkError("x"))


def test_pool_exhausted_message_names_last_error():
    last = AuthError("bad key")
    error = PoolExhaustedError("Groq", last)

    assert "Groq" in str(error)
    assert "AuthError: bad key" in str(error)
    assert error.last_error is last


def test_batch_item_failure_keeps_cause():
    cause = ProviderError("", status_code=400)
    failure = BatchItemFailure(2, "item", cause)

    assert failure.message == "ProviderError"
    assert failure.status_code == 400
    assert failure.cause is cause


def test_task_result_by_state():
    task = Task(index=0, item="a")
    assert task.result is None

    task.state, task.value = TaskState.SUCCEEDED, "A"
    assert task.result == "A"

    failure = BatchItemFailure(0, "a", ValueError("boom"))
    task.state, task.error = TaskState.FAILED, failure
    assert task.result is failure
    assert task.duration is None
