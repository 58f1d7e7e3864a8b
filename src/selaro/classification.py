import logging

from selaro.extraction import extract_memory
from selaro.session import missing_fields
from selaro.validation import classify_urgency

logger = logging.getLogger(__name__)

# Checked in order; the first that applies wins
INTENT_RULES = (
    ("urgent_appointment_request", 0.95),
    ("appointment_request", 0.90),
    ("symptom_report", 0.85),
    ("patient_info_provided", 0.80),
)
DEFAULT_INTENT = ("inquiry", 0.5)


def detect_intent(memory, urgency: str) -> tuple[str, float]:
    """Coarse intent + confidence from what one message revealed."""
    checks = {
        "urgent_appointment_request": bool(memory.reason) and urgency == "akut",
        "appointment_request": bool(memory.reason and memory.preferred_time),
        "symptom_report": bool(memory.reason),
        "patient_info_provided": bool(memory.name or memory.phone),
    }
    for intent, confidence in INTENT_RULES:
        if checks[intent]:
            return intent, confidence
    return DEFAULT_INTENT


def analyze_message(message: str) -> dict:
    """Run extraction, missing-field resolution and urgency on a single message."""
    memory = extract_memory([], message)
    missing = missing_fields(memory)
    urgency = classify_urgency(memory.reason, message)
    intent, confidence = detect_intent(memory, urgency)
    logger.info("NLU: intent=%s confidence=%.2f missing=%s", intent, confidence, missing)
    return {
        "message": message,
        "intent": intent,
        "confidence": confidence,
        "memory": memory.to_dict(),
        "missingFields": missing,
        "urgency": urgency,
    }
