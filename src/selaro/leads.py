import logging
import time

from selaro.notifications import NotificationQueue
from selaro.store import StoreError, SupabaseClient
from selaro.validation import (
    INSURANCE_VALUES,
    PATIENT_TYPES,
    URGENCY_VALUES,
    is_non_empty,
    pick_choice,
    sanitize_string,
)

logger = logging.getLogger(__name__)


def build_lead_row(
    *,
    name: str,
    phone: str,
    reason: str,
    preferred_time: str,
    urgency: str | None = None,
    source: str = "twilio",
    raw_text: str = "",
    session_ref: str = "",
) -> dict:
    """Row for the `leads` table from a completed conversation."""
    return {
        "call_sid": session_ref or f"{source}-{int(time.time() * 1000)}",
        "name": name.strip(),
        "phone": phone.strip(),
        "concern": reason.strip(),
        "urgency": urgency or "normal",
        "insurance": None,
        "preferred_slots": {"raw": preferred_time.strip()},
        "notes": raw_text or None,
        "status": "new",
        "source": source,
    }


def build_manual_lead_row(data: dict) -> dict:
    """Row for a lead typed in by staff. Acute leads start in the callback queue."""
    urgency = pick_choice(data.get("urgency"), URGENCY_VALUES, "normal")
    notes = [
        f"Patiententyp: {pick_choice(data.get('patient_type'), PATIENT_TYPES, 'neu')}",
    ]
    if is_non_empty(data.get("internal_notes")):
        notes.append(sanitize_string(data["internal_notes"]))

    return {
        "call_sid": None,
        "name": sanitize_string(data.get("name"), 200),
        "phone": sanitize_string(data.get("phone"), 50),
        "concern": sanitize_string(data.get("reason"), 1000),
        "urgency": urgency,
        "insurance": pick_choice(data.get("insurance_status"), INSURANCE_VALUES, "unbekannt"),
        "preferred_slots": (
            {"raw": sanitize_string(data["preferred_time"], 200)}
            if is_non_empty(data.get("preferred_time")) else None
        ),
        "notes": "\n".join(notes),
        "status": "callback" if urgency == "akut" else "new",
        "source": "manual",
    }


class LeadGateway:
    """Write one lead row and hand the saved lead to the notification queue."""

    def __init__(self, store: SupabaseClient, notifications: NotificationQueue | None = None):
        self.store = store
        self.notifications = notifications

    async def save_lead(
        self,
        *,
        name: str | None,
        phone: str | None,
        reason: str | None,
        preferred_time: str | None,
        urgency: str | None = None,
        source: str = "twilio",
        raw_text: str = "",
        session_ref: str = "",
    ) -> dict | None:
        """Return the stored row, or None when a field is blank or the write failed."""
        required = {"name": name, "phone": phone, "reason": reason, "preferred_time": preferred_time}
        blank = [k for k, v in required.items() if not is_non_empty(v)]
        if blank:
            logger.info("Skipping lead save, missing: %s", blank)
            return None

        row = build_lead_row(
            name=name,
            phone=phone,
            reason=reason,
            preferred_time=preferred_time,
            urgency=urgency,
            source=source,
            raw_text=raw_text,
            session_ref=session_ref,
        )
        try:
            saved = await self.store.insert_lead(row)
        except StoreError as e:
            logger.error("Lead insert failed for %s: %s", row["call_sid"], e)
            return None

        logger.info("Lead saved: id=%s source=%s urgency=%s", saved.get("id"), source, row["urgency"])
        if self.notifications is not None:
            try:
                self.notifications.enqueue(saved)
            except Exception as e:
                logger.error("Could not queue lead notification: %s", e)
        return saved
