"""Email and Slack actions.

Both fall back to a logged dry run when no transport is configured, so
workflows can be authored and exercised before credentials exist.
"""

import asyncio
import smtplib
from email.mime.text import MIMEText
from typing import Any, Dict, Optional

import httpx
import structlog

from actions.base import ActionResult, BaseAction
from app.config import get_settings

logger = structlog.get_logger(__name__)


class EmailAction(BaseAction):
    """Send an email over SMTP.

    Template config: smtp_host, smtp_port, smtp_user, smtp_password,
    from_address, use_tls (each defaults to the SMTP_* settings).

    Step parameters: to, subject, body
    """

    action_type = "email"
    display_name = "Send Email"
    description = "Send an email through SMTP"

    async def execute(
        self,
        action_config: Dict[str, Any],
        step_config: Dict[str, Any],
        data: Any,
        context: Dict[str, Any],
    ) -> ActionResult:
        to_addr = step_config.get("to")
        if not to_addr:
            return ActionResult(success=False, error="Missing required parameter: to")
        subject = step_config.get("subject", "")
        body = step_config.get("body", "")

        settings = get_settings()
        smtp_host = action_config.get("smtp_host", settings.SMTP_HOST)
        if not smtp_host:
            logger.info("Email dry run (no SMTP host configured)", to=to_addr, subject=subject)
            return ActionResult(success=True, output={"sent": True, "to": to_addr, "subject": subject, "dry_run": True})

        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = action_config.get("from_address", settings.SMTP_FROM_ADDRESS)
        msg["To"] = to_addr

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            lambda: self._send_smtp(
                smtp_host,
                action_config.get("smtp_port", settings.SMTP_PORT),
                action_config.get("smtp_user", settings.SMTP_USER),
                action_config.get("smtp_password", settings.SMTP_PASSWORD),
                action_config.get("use_tls", settings.SMTP_USE_TLS),
                msg,
            ),
        )
        return ActionResult(success=True, output={"sent": True, "to": to_addr, "subject": subject})

    @staticmethod
    def _send_smtp(host, port, user, password, use_tls, msg: MIMEText) -> None:
        """Synchronous SMTP send."""
        with smtplib.SMTP(host, port) as server:
            if use_tls:
                server.starttls()
            if user and password:
                server.login(user, password)
            server.send_message(msg)


class SlackAction(BaseAction):
    """Post a message to Slack through an incoming webhook.

    Template config: webhook_url (defaults to SLACK_WEBHOOK_URL)
    Step parameters: channel, message
    """

    action_type = "slack"
    display_name = "Slack Message"
    description = "Post a message to a Slack channel"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    async def execute(
        self,
        action_config: Dict[str, Any],
        step_config: Dict[str, Any],
        data: Any,
        context: Dict[str, Any],
    ) -> ActionResult:
        channel = step_config.get("channel", action_config.get("channel"))
        message = step_config.get("message", "")
        webhook_url = action_config.get("webhook_url") or get_settings().SLACK_WEBHOOK_URL
        if not webhook_url:
            logger.info("Slack dry run (no webhook configured)", channel=channel)
            return ActionResult(success=True, output={"sent": True, "channel": channel, "message": message, "dry_run": True})

        payload: Dict[str, Any] = {"text": message}
        if channel:
            payload["channel"] = channel
        async with httpx.AsyncClient(transport=self._transport, timeout=10) as client:
            response = await client.post(webhook_url, json=payload)
            response.raise_for_status()

        return ActionResult(success=True, output={"sent": True, "channel": channel, "message": message})
