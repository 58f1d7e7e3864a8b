"""Detect and parse the LEAD SUMMARY block in a model reply.

All four labelled lines must be present and non-empty, otherwise the reply
counts as having no summary. A header without usable content is never a
partial lead.
"""

import logging
import re
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)

LEAD_SUMMARY_MARKER = "LEAD SUMMARY"

# Tolerates "- Name:" and "**Name:**" the model sometimes emits
_LINE = r"^[ \t]*(?:[-*•][ \t]*)?(?:\*\*)?{label}(?:\*\*)?[ \t]*:(?:\*\*)?[ \t]*(.*?)[ \t]*$"

SUMMARY_FIELDS = (
    ("name", "Name"),
    ("phone", "Telefon"),
    ("reason", "Grund"),
    ("preferred_time", "Wunschtermin"),
)

_PATTERNS = {
    field: re.compile(_LINE.format(label=label), re.IGNORECASE | re.MULTILINE)
    for field, label in SUMMARY_FIELDS
}


@dataclass
class LeadSummary:
    name: str
    phone: str
    reason: str
    preferred_time: str

    def to_dict(self) -> dict:
        return asdict(self)


def detect_lead_summary(reply: str) -> LeadSummary | None:
    """Return the parsed summary, or None when there is no complete one."""
    if not reply or LEAD_SUMMARY_MARKER not in reply:
        return None

    block = reply.split(LEAD_SUMMARY_MARKER, 1)[1]
    values = {}
    for field, pattern in _PATTERNS.items():
        m = pattern.search(block)
        value = m.group(1).strip().strip("*").strip() if m else ""
        if not value:
            logger.warning("%s found but %s is missing: %r", LEAD_SUMMARY_MARKER, field, reply)
            return None
        values[field] = value

    summary = LeadSummary(**values)
    logger.info("Parsed lead summary: %s", summary.to_dict())
    return summary
