"""Email notifications for bookings (Resend HTTP API).

Delivery is best-effort: every failure is logged and reported back as a
``DispatchResult`` and nothing here raises into the booking flow.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, List, Optional, Tuple
from zoneinfo import ZoneInfo
import html
import logging
import httpx

from settings import REMINDERS_SENT_KEY
from state.models import Booking, PHONE, VIDEO
from state.repository import InMemoryStore
from observability import metrics

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class DispatchResult:
    success: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None
    error: Any = None


def appointment_time(slot_key: str, tz: ZoneInfo) -> datetime:
    return datetime.strptime(slot_key, "%Y-%m-%d-%H:%M").replace(tzinfo=tz)


def format_appointment(slot_key: str, tz: ZoneInfo) -> Tuple[str, str]:
    when = appointment_time(slot_key, tz)
    hour = when.hour
    display_hour = hour - 12 if hour > 12 else (12 if hour == 0 else hour)
    time_text = f"{display_hour}:{when.minute:02d} {'PM' if hour >= 12 else 'AM'}"
    date_text = f"{when.strftime('%A, %B')} {when.day}, {when.year}"
    return date_text, time_text


def _method_text(method: str) -> str:
    if method == VIDEO:
        return "We'll send you a video call link shortly before your appointment."
    if method == PHONE:
        return "We'll call you at your provided phone number."
    return "Please be online on the chat platform and ready to receive a call."


class ReminderDispatcher:
    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        *,
        tz: str = "America/Phoenix",
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.tz = ZoneInfo(tz)
        self._client = client
        self._timeout = timeout

    def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            return self._client.post(RESEND_URL, json=payload, headers=headers)
        with httpx.Client(timeout=self._timeout) as client:
            return client.post(RESEND_URL, json=payload, headers=headers)

    def _send(self, to_email: str, subject: str, body: str) -> DispatchResult:
        if not self.api_key:
            logger.info("Resend API key not configured, skipping email to %s", to_email)
            return DispatchResult(success=False, reason="not_configured")
        payload = {"from": self.from_email, "to": [to_email], "subject": subject, "html": body}
        try:
            resp = self._post(payload)
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("Failed to send email to %s", to_email)
            return DispatchResult(success=False, reason="transport_error", error=str(exc))
        if resp.status_code >= 400:
            logger.error("Resend API error %s: %s", resp.status_code, data)
            return DispatchResult(success=False, reason=f"http_{resp.status_code}", error=data)
        return DispatchResult(success=True, message_id=data.get("id"))

    def _body(self, booking: Booking, headline: str, lead: str) -> str:
        date_text, time_text = format_appointment(booking.slot_key, self.tz)
        return (
            f"<h1>{headline}</h1>"
            f"<p>Hi {html.escape(booking.name)},</p>"
            f"<p>{lead}</p>"
            f"<p><strong>Date:</strong> {date_text}<br>"
            f"<strong>Time:</strong> {time_text}<br>"
            f"<strong>Method:</strong> {booking.contact_method.capitalize()}</p>"
            f"<p>{_method_text(booking.contact_method)}</p>"
            "<p>The survey takes about 10-15 minutes.</p>"
        )

    def send_reminder(self, booking: Booking, to_email: str) -> DispatchResult:
        _, time_text = format_appointment(booking.slot_key, self.tz)
        body = self._body(
            booking,
            "Reminder: Your Survey is in 1 Hour!",
            "This is a friendly reminder that your survey appointment is coming up in about 1 hour.",
        )
        return self._send(to_email, f"Reminder: Your Survey is in 1 Hour - {time_text}", body)

    def send_confirmation(self, booking: Booking) -> DispatchResult:
        to_email = booking.reminder_address()
        if not to_email:
            return DispatchResult(success=False, reason="no_email")
        date_text, time_text = format_appointment(booking.slot_key, self.tz)
        body = self._body(booking, "You're booked!", "Thanks for signing up. Your appointment is confirmed.")
        return self._send(to_email, f"Your survey appointment - {date_text} at {time_text}", body)


def due_reminders(bookings: List[Booking], now: datetime, already_sent: set, tz: ZoneInfo) -> List[Tuple[Booking, str]]:
    """Bookings starting more than one and at most two hours from ``now`` that still need a reminder."""
    lower, upper = now + timedelta(hours=1), now + timedelta(hours=2)
    due: List[Tuple[Booking, str]] = []
    for booking in bookings:
        email = booking.reminder_address()
        if not email or booking.id in already_sent or booking.completed:
            continue
        when = appointment_time(booking.slot_key, tz)
        if lower < when <= upper:
            due.append((booking, email))
    return due


@dataclass
class SweepResult:
    sent: List[str] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "remindersSent": len(self.sent),
            "errors": len(self.errors),
            "details": {"remindersSent": self.sent, "errors": self.errors},
        }


def run_reminder_sweep(store: InMemoryStore, bookings: List[Booking], dispatcher: ReminderDispatcher, now: datetime) -> SweepResult:
    already_sent = set(store.get(REMINDERS_SENT_KEY) or [])
    result = SweepResult()
    for booking, email in due_reminders(bookings, now, already_sent, dispatcher.tz):
        outcome = dispatcher.send_reminder(booking, email)
        if outcome.success:
            result.sent.append(booking.id)
            already_sent.add(booking.id)
            metrics.inc("reminders.sent")
        elif outcome.reason != "not_configured":
            result.errors.append({"bookingId": booking.id, "slotKey": booking.slot_key, "error": outcome.reason})
            metrics.inc("reminders.failed")
    if result.sent:
        store.set(REMINDERS_SENT_KEY, sorted(already_sent))
    return result
