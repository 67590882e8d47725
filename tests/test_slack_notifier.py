from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from config import NotifyTarget, SlackConfig
from errors import NotifyError
from slack_notifier import NO_FRS_TEXT, SLACK_POST_MESSAGE_URL, SlackNotifier

_CONFIG = SlackConfig(
    enabled=True,
    summary_target=NotifyTarget(type="user", id="U123"),
    no_frs_channel_id="C-QUIET",
    error_target=NotifyTarget(type="channel", id="C-ERR"),
)


def _ok(body=None) -> MagicMock:
    response = MagicMock()
    response.json.return_value = body if body is not None else {"ok": True}
    return response


def test_send_summary_posts_to_summary_target() -> None:
    with patch("slack_notifier.requests.post", return_value=_ok()) as mock_post:
        SlackNotifier("xoxb-test", _CONFIG).send_summary("*Audit:* done")

    assert mock_post.call_args.args[0] == SLACK_POST_MESSAGE_URL
    assert mock_post.call_args.kwargs["json"] == {"channel": "U123", "text": "*Audit:* done"}
    assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer xoxb-test"


def test_send_no_frs_prefers_quiet_channel() -> None:
    with patch("slack_notifier.requests.post", return_value=_ok()) as mock_post:
        SlackNotifier("xoxb-test", _CONFIG).send_no_frs()

    assert mock_post.call_args.kwargs["json"] == {"channel": "C-QUIET", "text": NO_FRS_TEXT}


def test_disabled_and_dry_run_never_post() -> None:
    disabled = SlackConfig(enabled=False, summary_target=NotifyTarget(type="user", id="U1"))
    with patch("slack_notifier.requests.post") as mock_post:
        SlackNotifier("xoxb-test", disabled).send_summary("hidden")
        SlackNotifier(None, _CONFIG, dry_run=True).send_summary("logged only")

    mock_post.assert_not_called()


def test_missing_token_raises() -> None:
    with pytest.raises(NotifyError, match="SLACK_BOT_TOKEN"):
        SlackNotifier(None, _CONFIG).send_summary("text")


@pytest.mark.parametrize(
    "outcome",
    [_ok({"ok": False, "error": "channel_not_found"}), requests.ConnectionError("down")],
)
def test_send_failures_raise_notify_error(outcome) -> None:
    kwargs = {"side_effect": outcome} if isinstance(outcome, Exception) else {"return_value": outcome}
    with patch("slack_notifier.requests.post", **kwargs):
        with pytest.raises(NotifyError):
            SlackNotifier("xoxb-test", _CONFIG).send_summary("text")


def test_send_error_goes_to_error_target_and_never_raises() -> None:
    with patch("slack_notifier.requests.post", return_value=_ok()) as mock_post:
        SlackNotifier("xoxb-test", _CONFIG).send_error("batch 2 failed")

    payload = mock_post.call_args.kwargs["json"]
    assert payload["channel"] == "C-ERR"
    assert "batch 2 failed" in payload["text"]

    with patch("slack_notifier.requests.post", side_effect=requests.Timeout("slow")):
        SlackNotifier("xoxb-test", _CONFIG).send_error("still swallowed")
