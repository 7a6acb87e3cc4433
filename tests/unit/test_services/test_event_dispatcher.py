"""Tests for the Slack event dispatcher."""

import asyncio
import time
import pytest
from unittest.mock import Mock
from src.models.assistant import Run, RunStatus
from src.models.slack_event import SlackEvent
from src.services.event_dispatcher import APOLOGY_MESSAGE, SlackEventDispatcher
from src.services.slack_dedup import EventDeduplicator
from src.utils.errors import NoReplyError, RunFailedError, SlackVerificationError, ThreadCreationError
from tests.fixtures.slack_events import (
    slack_direct_message_event,
    slack_message_changed_event,
    slack_self_message_event,
    slack_url_verification_challenge,
)
from tests.utils.assertions import assert_acknowledged, assert_json_response
from tests.utils.helpers import TEST_APP_ID, TEST_SIGNING_SECRET, TYPING_TS, encode_body, signed_headers


@pytest.fixture
def dispatcher(thread_store, mock_assistant_client, mock_slack_client, job_runner):
    return SlackEventDispatcher(
        signing_secret=TEST_SIGNING_SECRET,
        bot_app_id=TEST_APP_ID,
        thread_store=thread_store,
        assistant=mock_assistant_client,
        slack=mock_slack_client,
        jobs=job_runner,
        deduplicator=EventDeduplicator(),
    )


def _deliver(dispatcher, body, timestamp=None):
    raw = encode_body(body)
    return dispatcher.handle(raw, signed_headers(raw, timestamp=timestamp))


def _record_calls(slack, assistant):
    """Wrap collaborator mocks so every call lands in one ordered list."""
    calls = []

    def track(name, mock):
        original = mock.side_effect
        return_value = mock.return_value

        async def side_effect(*args, **kwargs):
            calls.append(name)
            if original is not None:
                return await original(*args, **kwargs)
            return return_value

        mock.side_effect = side_effect

    track("send_typing_indicator", slack.send_typing_indicator)
    track("create_thread", assistant.create_thread)
    track("append_message", assistant.append_message)
    track("start_run", assistant.start_run)
    track("await_completion", assistant.await_completion)
    track("fetch_latest_reply", assistant.fetch_latest_reply)
    track("delete_message", slack.delete_message)
    track("send_markdown", slack.send_markdown)
    track("send_text", slack.send_text)
    return calls


@pytest.mark.unit
def test_url_verification_returns_challenge(dispatcher, mock_assistant_client):
    response = _deliver(dispatcher, slack_url_verification_challenge("abc123"))

    assert_json_response(response, 200, {"challenge": "abc123"})
    mock_assistant_client.create_thread.assert_not_called()


@pytest.mark.unit
def test_url_verification_without_challenge(dispatcher):
    response = _deliver(dispatcher, {"type": "url_verification"})

    assert_json_response(response, 400, {"error": "Invalid challenge"})


@pytest.mark.unit
@pytest.mark.parametrize("missing", ["x-slack-signature", "x-slack-request-timestamp"])
def test_missing_headers_rejected(dispatcher, missing):
    raw = encode_body(slack_url_verification_challenge())
    headers = signed_headers(raw)
    del headers[missing]

    response = dispatcher.handle(raw, headers)

    assert response["statusCode"] == 400


@pytest.mark.unit
def test_missing_signing_secret_rejected(dispatcher):
    dispatcher.signing_secret = ""

    response = _deliver(dispatcher, slack_url_verification_challenge())

    assert response["statusCode"] == 400


@pytest.mark.unit
def test_stale_timestamp_rejected(dispatcher):
    stale = str(int(time.time()) - 400)

    response = _deliver(dispatcher, slack_url_verification_challenge(), timestamp=stale)

    assert_json_response(response, 400, {"error": "Request timestamp is too old"})


@pytest.mark.unit
def test_future_timestamp_rejected(dispatcher):
    future = str(int(time.time()) + 400)

    response = _deliver(dispatcher, slack_url_verification_challenge(), timestamp=future)

    assert response["statusCode"] == 400


@pytest.mark.unit
def test_bad_signature_rejected(dispatcher, mock_slack_client):
    raw = encode_body(slack_direct_message_event())
    headers = signed_headers(raw, secret="wrong_secret")

    response = dispatcher.handle(raw, headers)

    assert_json_response(response, 401, {"error": "Invalid signature"})
    mock_slack_client.send_typing_indicator.assert_not_called()


@pytest.mark.unit
@pytest.mark.parametrize("secret,timestamp,status", [
    ("wrong_secret", None, 401),
    (TEST_SIGNING_SECRET, str(int(time.time()) - 600), 400),
])
def test_verify_raises_with_response_status(dispatcher, secret, timestamp, status):
    raw = encode_body(slack_direct_message_event())

    with pytest.raises(SlackVerificationError) as exc_info:
        dispatcher._verify(raw, signed_headers(raw, secret=secret, timestamp=timestamp))

    assert exc_info.value.status_code == status


@pytest.mark.unit
def test_headers_are_case_insensitive(dispatcher):
    raw = encode_body(slack_url_verification_challenge("abc123"))
    headers = {
        ("X-Slack-Signature" if key == "x-slack-signature" else key): value
        for key, value in signed_headers(raw).items()
    }

    response = dispatcher.handle(raw, headers)

    assert response["statusCode"] == 200


@pytest.mark.unit
@pytest.mark.parametrize("raw", [b"{not json", b"[1, 2, 3]", b"\xff\xfe"])
def test_invalid_json_rejected(dispatcher, raw):
    response = dispatcher.handle(raw, signed_headers(raw))

    assert_json_response(response, 400, {"error": "Invalid JSON body"})


@pytest.mark.unit
def test_channel_message_acknowledged_without_processing(dispatcher, sample_channel_event, mock_assistant_client, mock_slack_client, job_runner):
    response = _deliver(dispatcher, sample_channel_event)

    assert_acknowledged(response)
    job_runner.wait_idle(timeout=5)
    mock_slack_client.send_typing_indicator.assert_not_called()
    mock_assistant_client.create_thread.assert_not_called()
    mock_assistant_client.append_message.assert_not_called()


@pytest.mark.unit
def test_self_authored_message_ignored(dispatcher, mock_assistant_client, mock_slack_client, job_runner):
    response = _deliver(dispatcher, slack_self_message_event(app_id=TEST_APP_ID))

    assert_acknowledged(response)
    job_runner.wait_idle(timeout=5)
    mock_slack_client.send_typing_indicator.assert_not_called()
    mock_assistant_client.append_message.assert_not_called()


@pytest.mark.unit
def test_other_app_message_is_processed(dispatcher, mock_assistant_client, job_runner):
    response = _deliver(dispatcher, slack_self_message_event(app_id="A_OTHER_APP"))

    assert_acknowledged(response)
    assert job_runner.wait_idle(timeout=5)
    mock_assistant_client.append_message.assert_called_once()


@pytest.mark.unit
def test_hidden_event_ignored(dispatcher, mock_slack_client, job_runner):
    response = _deliver(dispatcher, slack_message_changed_event())

    assert_acknowledged(response)
    mock_slack_client.send_typing_indicator.assert_not_called()


@pytest.mark.unit
def test_unknown_envelope_acknowledged(dispatcher, mock_slack_client):
    response = _deliver(dispatcher, {"type": "app_rate_limited", "minute_rate_limited": 1518467820})

    assert_acknowledged(response)
    mock_slack_client.send_typing_indicator.assert_not_called()


@pytest.mark.unit
def test_direct_message_from_new_user_runs_full_turn(dispatcher, mock_assistant_client, mock_slack_client, thread_store, job_runner):
    calls = _record_calls(mock_slack_client, mock_assistant_client)

    response = _deliver(dispatcher, slack_direct_message_event(text="Hello", user="U123456", channel="D123456"))

    assert_acknowledged(response)
    assert job_runner.wait_idle(timeout=5)
    assert calls == [
        "send_typing_indicator",
        "create_thread",
        "append_message",
        "start_run",
        "await_completion",
        "fetch_latest_reply",
        "delete_message",
        "send_markdown",
    ]
    mock_assistant_client.append_message.assert_called_once_with("thread_abc123", "Hello")
    mock_assistant_client.await_completion.assert_called_once_with("thread_abc123", "run_123")
    mock_slack_client.delete_message.assert_called_once_with("D123456", TYPING_TS)
    mock_slack_client.send_markdown.assert_called_once_with("D123456", "Hi there!")
    assert thread_store.get("U123456") == "thread_abc123"


@pytest.mark.unit
def test_returning_user_reuses_thread(dispatcher, mock_assistant_client, thread_store, job_runner):
    thread_store.set("U123456", "thread_existing")

    _deliver(dispatcher, slack_direct_message_event(user="U123456"))

    assert job_runner.wait_idle(timeout=5)
    mock_assistant_client.create_thread.assert_not_called()
    mock_assistant_client.append_message.assert_called_once_with("thread_existing", "Hello")


@pytest.mark.unit
def test_slack_retry_is_not_processed_twice(dispatcher, mock_assistant_client, job_runner):
    body = slack_direct_message_event(event_id="EvRETRY1")

    first = _deliver(dispatcher, body)
    retry = _deliver(dispatcher, body)

    assert_acknowledged(first)
    assert_acknowledged(retry)
    assert retry["headers"]["X-Slack-Ignored-Retry"] == "true"
    assert job_runner.wait_idle(timeout=5)
    mock_assistant_client.append_message.assert_called_once()


@pytest.mark.unit
@pytest.mark.parametrize("failing_call,error", [
    ("create_thread", ThreadCreationError("Failed to create OpenAI thread", status_code=500)),
    ("await_completion", RunFailedError("run_123", "failed")),
    ("fetch_latest_reply", NoReplyError("No assistant message found in thread")),
])
def test_turn_failure_sends_apology(dispatcher, mock_assistant_client, mock_slack_client, job_runner, failing_call, error):
    getattr(mock_assistant_client, failing_call).side_effect = error

    response = _deliver(dispatcher, slack_direct_message_event(channel="D123456"))

    assert_acknowledged(response)
    assert job_runner.wait_idle(timeout=5)
    mock_slack_client.send_text.assert_called_once_with("D123456", APOLOGY_MESSAGE)
    mock_slack_client.send_markdown.assert_not_called()
    mock_slack_client.delete_message.assert_called_once_with("D123456", TYPING_TS)


@pytest.mark.unit
def test_turn_continues_without_typing_indicator(dispatcher, mock_slack_client, job_runner):
    mock_slack_client.send_typing_indicator.return_value = None

    _deliver(dispatcher, slack_direct_message_event())

    assert job_runner.wait_idle(timeout=5)
    mock_slack_client.delete_message.assert_not_called()
    mock_slack_client.send_markdown.assert_called_once()


@pytest.mark.unit
def test_unexpected_error_returns_500(dispatcher, mock_slack_client):
    dispatcher.jobs = Mock()
    dispatcher.jobs.run.side_effect = RuntimeError("loop gone")

    response = _deliver(dispatcher, slack_direct_message_event())

    assert_json_response(response, 500, {"error": "Internal server error"})


@pytest.mark.unit
def test_retry_after_internal_error_is_processed(dispatcher, mock_assistant_client, job_runner):
    body = slack_direct_message_event()
    dispatcher.jobs = Mock()
    dispatcher.jobs.run.side_effect = RuntimeError("loop gone")

    first = _deliver(dispatcher, body)
    assert first["statusCode"] == 500

    dispatcher.jobs = job_runner
    retry = _deliver(dispatcher, body)
    assert job_runner.wait_idle(timeout=5)

    assert_acknowledged(retry)
    assert "X-Slack-Ignored-Retry" not in (retry.get("headers") or {})
    mock_assistant_client.append_message.assert_called_once()


@pytest.mark.unit
def test_should_process_filter():
    dispatcher = SlackEventDispatcher(TEST_SIGNING_SECRET, TEST_APP_ID, Mock(), Mock(), Mock(), Mock())

    assert dispatcher.should_process(SlackEvent(type="message", user="U1", channel="D1")) is True
    assert dispatcher.should_process(SlackEvent(type="message", user="U1", channel="C1")) is False
    assert dispatcher.should_process(SlackEvent(type="message", channel="D1")) is False
    assert dispatcher.should_process(SlackEvent(type="app_mention", user="U1", channel="D1")) is False
    assert dispatcher.should_process(SlackEvent(type="message", user="U1", channel="D1", hidden=True)) is False


@pytest.mark.unit
def test_self_authored_fails_open_without_ids():
    dispatcher = SlackEventDispatcher(TEST_SIGNING_SECRET, TEST_APP_ID, Mock(), Mock(), Mock(), Mock())

    assert dispatcher.is_self_authored(SlackEvent(type="message", app_id=TEST_APP_ID)) is True
    assert dispatcher.is_self_authored(SlackEvent(type="message")) is False

    dispatcher.bot_app_id = ""
    assert dispatcher.is_self_authored(SlackEvent(type="message", app_id=TEST_APP_ID)) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_turns_for_same_user_are_serialized(thread_store, mock_assistant_client, mock_slack_client):
    dispatcher = SlackEventDispatcher(
        TEST_SIGNING_SECRET, TEST_APP_ID, thread_store, mock_assistant_client, mock_slack_client, Mock()
    )
    active = 0
    max_active = 0

    async def slow_completion(thread_id, run_id):
        nonlocal active, max_active
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.01)
        active -= 1
        return Run(id=run_id, status=RunStatus.COMPLETED)

    mock_assistant_client.await_completion.side_effect = slow_completion
    first = SlackEvent(type="message", user="U1", channel="D1", text="one")
    second = SlackEvent(type="message", user="U1", channel="D1", text="two")

    await asyncio.gather(
        dispatcher.process_direct_message(first),
        dispatcher.process_direct_message(second),
    )

    assert max_active == 1
    mock_assistant_client.create_thread.assert_called_once()
    assert [c.args[1] for c in mock_assistant_client.append_message.call_args_list] == ["one", "two"]
    assert mock_slack_client.send_markdown.await_count == 2
