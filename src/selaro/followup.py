"""Follow-up reminders for the staff dashboard.

A lead is overdue once it has waited more than an hour without being
scheduled or written off. Leads from the last 15 minutes are announced
as new.
"""

from datetime import datetime, timedelta, timezone

OVERDUE_AFTER_MINUTES = 60
NEW_LEAD_WINDOW_MINUTES = 15
SETTLED_STATUSES = {"scheduled", "lost"}


def parse_timestamp(value: str) -> datetime:
    """Parse a PostgREST timestamp (`2025-01-01T10:00:00.123+00:00` or `...Z`)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_followup_status(lead: dict, now: datetime | None = None) -> dict:
    now = now or datetime.now(timezone.utc)
    waited = now - parse_timestamp(lead["created_at"])
    minutes = int(waited.total_seconds() // 60)
    return {
        "is_overdue": minutes > OVERDUE_AFTER_MINUTES and lead.get("status") not in SETTLED_STATUSES,
        "minutes_waiting": minutes,
    }


def _label(lead: dict) -> str:
    reason = lead.get("concern") or lead.get("reason") or "Grund nicht angegeben"
    return f"{lead.get('name', '')} – {reason}"


def build_notifications(leads: list[dict], now: datetime | None = None) -> list[dict]:
    """Overdue follow-ups plus recent leads, newest first."""
    now = now or datetime.now(timezone.utc)
    notifications = []

    for lead in leads:
        status = compute_followup_status(lead, now)
        if status["is_overdue"]:
            notifications.append({
                "type": "followup_overdue",
                "text": f"Rückruf überfällig: {_label(lead)}",
                "link": f"/leads?lead={lead['id']}",
                "created_at": lead["created_at"],
                "minutes_waiting": status["minutes_waiting"],
                "lead_id": lead["id"],
            })

    cutoff = now - timedelta(minutes=NEW_LEAD_WINDOW_MINUTES)
    for lead in leads:
        if parse_timestamp(lead["created_at"]) > cutoff:
            notifications.append({
                "type": "new_lead",
                "text": f"Neue Anfrage: {_label(lead)}",
                "link": f"/leads?lead={lead['id']}",
                "created_at": lead["created_at"],
                "lead_id": lead["id"],
            })

    notifications.sort(key=lambda n: parse_timestamp(n["created_at"]), reverse=True)
    return notifications
