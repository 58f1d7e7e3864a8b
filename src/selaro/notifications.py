"""Staff e-mail for new leads.

The lead gateway only enqueues; a background worker started with the app
does the SMTP delivery, with one retry after a short backoff. Delivery
failures are logged and dropped, never surfaced to the caller.
"""

import asyncio
import html
import logging
from dataclasses import dataclass
from email.message import EmailMessage

import aiosmtplib

logger = logging.getLogger(__name__)

SENDER_NAME = "Selaro AI Receptionist"

SOURCE_LABELS = {
    "twilio": "Telefonanruf",
    "simulate": "Web-Simulator",
    "manual": "Manuell erfasst",
}


@dataclass
class LeadEmail:
    subject: str
    text: str
    html: str


def build_lead_email(lead: dict) -> LeadEmail:
    concern = lead.get("concern") or ""
    preferred = (lead.get("preferred_slots") or {}).get("raw") or "Nicht angegeben"
    source = lead.get("source") or ""
    rows = [
        ("Name", lead.get("name") or ""),
        ("Telefonnummer", lead.get("phone") or ""),
        ("Grund", concern or "Nicht angegeben"),
        ("Dringlichkeit", "🔴 AKUT" if lead.get("urgency") == "akut" else "Normal"),
        ("Wunschtermin", preferred),
        ("Quelle", SOURCE_LABELS.get(source, source or "Unbekannt")),
    ]

    text_lines = ["Neuer Lead von der AI-Telefonassistenz", ""]
    text_lines += [f"{label}: {value}" for label, value in rows]
    text_lines += ["", "Bitte kontaktieren Sie den Patienten zur Terminbestätigung."]

    cell = "padding: 10px; border-bottom: 1px solid #e5e7eb;"
    table = "\n".join(
        f'<tr><td style="{cell} font-weight: bold;">{label}:</td>'
        f'<td style="{cell}">{html.escape(str(value))}</td></tr>'
        for label, value in rows
    )
    body = f"""<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
<h2 style="color: #00C896;">Neuer Lead von der AI-Telefonassistenz</h2>
<table style="width: 100%; border-collapse: collapse; margin: 20px 0;">
{table}
</table>
<p><strong>Bitte kontaktieren Sie den Patienten zur Terminbestätigung.</strong></p>
<p style="color: #6b7280; font-size: 12px;">Diese E-Mail wurde automatisch von Selaro generiert.</p>
</div>"""

    return LeadEmail(
        subject=f"Neuer Patientenanruf über Selaro – {concern or 'Zahnbehandlung'}",
        text="\n".join(text_lines),
        html=body,
    )


class EmailNotifier:
    """Send lead e-mails over SMTP. Port 465 uses implicit TLS, anything else STARTTLS."""

    def __init__(
        self,
        host: str = "",
        port: int = 587,
        username: str = "",
        password: str = "",
        recipient: str = "",
        timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.recipient = recipient
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host and self.username and self.password and self.recipient)

    def build_message(self, lead: dict) -> EmailMessage:
        email = build_lead_email(lead)
        msg = EmailMessage()
        msg["From"] = f'"{SENDER_NAME}" <{self.username}>'
        msg["To"] = self.recipient
        msg["Subject"] = email.subject
        msg.set_content(email.text)
        msg.add_alternative(email.html, subtype="html")
        return msg

    async def send(self, lead: dict) -> None:
        await aiosmtplib.send(
            self.build_message(lead),
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            use_tls=self.port == 465,
            start_tls=self.port != 465,
            timeout=self.timeout,
        )
        logger.info("Lead notification sent to %s for lead %s", self.recipient, lead.get("id"))


class NotificationQueue:
    def __init__(self, notifier: EmailNotifier, retry_delay: float = 2.0):
        self.notifier = notifier
        self.retry_delay = retry_delay
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run())

    async def stop(self, timeout: float = 5.0) -> None:
        """Give queued mails a moment to go out, then cancel the worker."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Dropping %d queued notifications on shutdown", self._queue.qsize())
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    def enqueue(self, lead: dict) -> bool:
        if not self.notifier.configured:
            logger.warning("Email notification skipped: SMTP or recipient not configured")
            return False
        self._queue.put_nowait(lead)
        return True

    async def drain(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            lead = await self._queue.get()
            try:
                await self.deliver(lead)
            finally:
                self._queue.task_done()

    async def deliver(self, lead: dict) -> bool:
        """One attempt plus one retry after `retry_delay`."""
        for attempt in range(2):
            try:
                await self.notifier.send(lead)
                return True
            except Exception as e:
                if attempt == 0:
                    logger.warning(
                        "Lead notification failed (attempt 1), retrying in %.0fs: %s",
                        self.retry_delay, e,
                    )
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error("Lead notification failed after retry: %s", e)
        return False
