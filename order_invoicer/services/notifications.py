"""Best-effort side channels: audible alert, desktop popup and email.

Every public method here swallows and logs its own failures. Nothing raised by
a channel may reach the pipeline.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Optional, Set

from order_invoicer.config import Settings
from order_invoicer.schemas.orders import Order
from order_invoicer.services.exceptions import NotificationError
from order_invoicer.services.process import CommandRunner, run_command

logger = logging.getLogger(__name__)

APP_ID = "Order Invoicer"


def format_order_total(order: Order, currency_symbol: str = "€") -> str:
    try:
        return f"{currency_symbol}{order.order_total:.2f}"
    except (TypeError, ValueError):
        return "N/A"


class SoundAlert:
    def __init__(self, settings: Settings, *, runner: CommandRunner = run_command) -> None:
        self._enabled = settings.sound_alert_enabled
        self._command = shlex.split(settings.sound_alert_command)
        self._runner = runner

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def play_new_order_alert(self, order_number: str) -> None:
        if not self._enabled:
            return
        try:
            logger.info("Playing alert sound for new order %s", order_number)
            result = await self._runner(self._command)
            if result.returncode != 0:
                raise NotificationError(f"alert command exited with {result.returncode}")
        except Exception as exc:
            logger.error("Failed to play alert sound for order %s: %s", order_number, exc)


class DesktopNotifier:
    def __init__(self, settings: Settings, *, runner: CommandRunner = run_command) -> None:
        self._enabled = settings.desktop_notifications_enabled
        self._command = shlex.split(settings.desktop_notify_command)
        self._runner = runner

    async def notify_new_order(self, order: Order) -> None:
        message = (
            f"Order #{order.order_number}\n"
            f"Customer: {order.customer_name}\n"
            f"Total: {format_order_total(order)}"
        )
        await self._notify("New Order Received!", message, urgency="normal", timeout=10)

    async def notify_error(self, title: str, message: str) -> None:
        await self._notify(f"Error: {title}", message, urgency="critical", timeout=15)

    async def notify_status(self, message: str) -> None:
        await self._notify("System Status", message, urgency="low", timeout=8)

    async def _notify(self, title: str, message: str, *, urgency: str, timeout: int) -> None:
        if not self._enabled:
            return
        argv = [
            *self._command,
            "--app-name",
            APP_ID,
            "--urgency",
            urgency,
            "--expire-time",
            str(timeout * 1000),
            title,
            message,
        ]
        try:
            result = await self._runner(argv)
            if result.returncode != 0:
                raise NotificationError(result.stderr.strip() or f"exit status {result.returncode}")
            logger.info("Desktop notification sent: %s", title)
        except Exception as exc:
            logger.error("Failed to send desktop notification '%s': %s", title, exc)


class EmailNotifier:
    """SMTP sender; a no-op unless an SMTP user and a recipient are configured."""

    def __init__(self, settings: Settings) -> None:
        self._host = settings.smtp_host
        self._port = settings.smtp_port
        self._user = settings.smtp_user
        self._password = settings.smtp_password or ""
        self._recipient = settings.notification_email
        self._configured = settings.email_configured

    @property
    def configured(self) -> bool:
        return self._configured

    @property
    def recipient(self) -> Optional[str]:
        return self._recipient

    async def send(self, subject: str, text: str, html: str | None = None) -> bool:
        if not self._configured:
            logger.debug("Email not configured, skipping '%s'", subject)
            return False
        try:
            await asyncio.to_thread(self._send_sync, subject, text, html)
        except Exception as exc:
            logger.error("Error sending email notification: %s", exc)
            return False
        logger.info("Email notification sent successfully.")
        return True

    def _build_message(self, subject: str, text: str, html: str | None) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = f'"Invoice System" <{self._user}>'
        msg["To"] = str(self._recipient)
        msg["Subject"] = subject
        msg.attach(MIMEText(text or "", _subtype="plain", _charset="utf-8"))
        if html:
            msg.attach(MIMEText(html, _subtype="html", _charset="utf-8"))
        return msg

    def _send_sync(self, subject: str, text: str, html: str | None) -> None:
        msg = self._build_message(subject, text, html)
        try:
            if self._port == 465:
                server: smtplib.SMTP = smtplib.SMTP_SSL(self._host, self._port, timeout=30)
            else:
                server = smtplib.SMTP(self._host, self._port, timeout=30)
            with server:
                server.ehlo()
                if self._port != 465:
                    try:
                        server.starttls()
                        server.ehlo()
                    except smtplib.SMTPNotSupportedError:
                        logger.debug("SMTP server %s does not offer STARTTLS", self._host)
                server.login(str(self._user), self._password)
                server.sendmail(str(self._user), [str(self._recipient)], msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"SMTP send failed: {exc}", cause=exc) from exc


class NotificationFanout:
    """Dispatches pipeline events to every channel, isolating their failures."""

    def __init__(
        self,
        sound: SoundAlert,
        desktop: DesktopNotifier,
        email: EmailNotifier,
    ) -> None:
        self._sound = sound
        self._desktop = desktop
        self._email = email
        self._background: Set[asyncio.Task] = set()

    @property
    def email(self) -> EmailNotifier:
        return self._email

    def alert_new_order(self, order_number: str) -> None:
        """Start the audible alert without waiting for it to finish."""

        if not self._sound.enabled:
            return
        task = asyncio.create_task(
            self._sound.play_new_order_alert(order_number),
            name=f"sound-alert-{order_number}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def new_order(self, order: Order) -> None:
        await self._guard("desktop", self._desktop.notify_new_order(order))

    async def order_failed(self, order: Order, error: Exception) -> None:
        title = f"Failed to process order {order.order_number}"
        await self._guard("desktop", self._desktop.notify_error(title, str(error)))
        if self._email.configured:
            details = json.dumps(order.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)
            await self._guard(
                "email",
                self._email.send(title, f"Error: {error}\n\nOrder Details: {details}"),
            )

    async def print_failed(self, path: Path, error: Exception) -> None:
        await self._guard(
            "desktop",
            self._desktop.notify_error("Printing failed", f"{Path(path).name}: {error}"),
        )

    async def drain(self) -> None:
        """Wait for detached alerts still running (used at shutdown and in tests)."""

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    @staticmethod
    async def _guard(channel: str, coro) -> None:
        try:
            await coro
        except Exception as exc:
            logger.error("Notification channel %s failed: %s", channel, exc)
