"""Slack notification channel (chat.postMessage via the Web API)."""

from __future__ import annotations

import logging

import requests

from config import NotifyTarget, SlackConfig
from errors import NotifyError

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"
REQUEST_TIMEOUT_SECONDS = 20
NO_FRS_TEXT = "No new FRs to process!"

LOGGER = logging.getLogger(__name__)


class SlackNotifier:
    """Sends run summaries and alerts for one product.

    Constructed once per product and passed to the orchestrator. ``enabled``
    comes from product config; ``dry_run`` logs messages instead of sending.
    """

    def __init__(self, token: str | None, config: SlackConfig, dry_run: bool = False) -> None:
        self.token = token
        self.config = config
        self.dry_run = dry_run

    def send(self, target: NotifyTarget | str, text: str) -> None:
        channel = target.id if isinstance(target, NotifyTarget) else target
        if not self.config.enabled:
            LOGGER.debug("Slack notifications disabled, skipping message to %s", channel)
            return
        if self.dry_run:
            LOGGER.info("[dry-run] Would send Slack message to %s (%s chars):\n%s", channel, len(text), text)
            return
        if not self.token:
            raise NotifyError("SLACK_BOT_TOKEN environment variable is required")

        try:
            response = requests.post(
                SLACK_POST_MESSAGE_URL,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Content-Type": "application/json; charset=utf-8",
                },
                json={"channel": channel, "text": text},
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise NotifyError(f"Slack request failed: {exc}", {"channel": channel}) from exc

        if not body.get("ok"):
            raise NotifyError(f"Slack rejected message: {body.get('error', 'unknown_error')}", {"channel": channel})
        LOGGER.info("Slack message sent to %s", channel)

    def send_summary(self, text: str) -> None:
        self.send(self.config.summary_target, text)

    def send_no_frs(self) -> None:
        self.send(self.config.no_frs_channel_id or self.config.summary_target.id, NO_FRS_TEXT)

    def send_error(self, message: str) -> None:
        """Best-effort alert to the error target; never raises."""
        target = self.config.error_target or self.config.summary_target
        text = f":rotating_light: *FR Triage Service Error*\n\n{message}"
        try:
            self.send(target, text)
        except Exception as exc:
            LOGGER.error("Failed to send Slack error notification: %s", exc)
