import re


def match_any_keyword(text: str, keywords: set[str]) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(re.search(rf'\b{re.escape(kw)}\b', lower) for kw in keywords)


def contains_any(text: str, phrases) -> bool:
    """Plain substring search over the lowercased text."""
    lower = text.lower()
    return any(phrase in lower for phrase in phrases)


# Strong pain / emergency indicators, including case variants
URGENT_INDICATORS = (
    "starke zahnschmerzen",
    "starken zahnschmerzen",
    "starker zahnschmerz",
    "sehr starke schmerzen",
    "sehr starken schmerzen",
    "starke schmerzen",
    "starken schmerzen",
    "sehr weh",
    "akut",
    "notfall",
    "schmerzen seit gestern",
    "schmerzen seit heute",
    "unerträglich",
    "kaum aushalten",
    "schlimme schmerzen",
    "schlimmen schmerzen",
)

FAREWELL_KEYWORDS = {
    "tschüss", "tschüs", "auf wiederhören", "auf wiedersehen",
    "das war's", "das wars", "das war alles", "schönen tag noch",
}

LEAD_STATUSES = ("new", "callback", "scheduled", "lost")
URGENCY_VALUES = ("akut", "normal")
PATIENT_TYPES = ("neu", "bestand")
INSURANCE_VALUES = ("gesetzlich", "privat", "unbekannt")

MAX_TEXT_LENGTH = 5000

WORD_TO_DIGIT = {
    "null": "0",
    "eins": "1",
    "zwei": "2", "zwo": "2", "drei": "3", "vier": "4",
    "fünf": "5", "sechs": "6", "sieben": "7", "acht": "8", "neun": "9",
}


def classify_urgency(reason: str | None, full_text: str | None) -> str:
    """Return "akut" if any urgent indicator occurs in reason + text, else "normal"."""
    text = f"{reason or ''} {full_text or ''}"
    return "akut" if contains_any(text, URGENT_INDICATORS) else "normal"


def detect_farewell(text: str) -> bool:
    return match_any_keyword(text, FAREWELL_KEYWORDS)


def words_to_digits(text: str) -> str:
    """Convert German digit words and single digits to a digit string.

    Example: "null eins sieben sechs" -> "0176"
    """
    tokens = re.findall(r"[a-zäöüß]+|\d", text.lower())
    digits = []
    for tok in tokens:
        if tok in WORD_TO_DIGIT:
            digits.append(WORD_TO_DIGIT[tok])
        elif tok.isdigit():
            digits.append(tok)
    return "".join(digits)


def is_non_empty(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


def sanitize_string(value, max_length: int = MAX_TEXT_LENGTH) -> str:
    """Trim, flatten control characters and cap the length."""
    if not isinstance(value, str):
        return ""
    return re.sub(r"[\r\n\t]", " ", value.strip())[:max_length]


def is_valid_phone(value) -> bool:
    if not isinstance(value, str):
        return False
    cleaned = value.strip()
    return bool(re.search(r"\d", cleaned)) and 7 <= len(cleaned) <= 20


def pick_choice(value, allowed: tuple[str, ...], default: str) -> str:
    cleaned = sanitize_string(value)
    return cleaned if cleaned in allowed else default
