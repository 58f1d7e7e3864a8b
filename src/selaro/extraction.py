"""Rule-based slot extraction from the caller's side of a conversation.

Each slot has its own matcher object; `extract_memory` runs them in order
over the caller text and returns a best-effort Memory. Unmatched slots stay
None. Nothing in here raises on odd input.
"""

import logging
import re

from selaro.session import Memory
from selaro.transcript import caller_text
from selaro.validation import URGENT_INDICATORS, contains_any, words_to_digits

logger = logging.getLogger(__name__)

_FLAGS = re.IGNORECASE

# ── Name ──

_NAME_WORD = r"[A-Za-zÄÖÜäöüß][A-Za-zÄÖÜäöüß'\-]*"
_NAME = rf"({_NAME_WORD}(?:[ \t]+{_NAME_WORD}){{0,3}})"

NAME_PATTERNS = (
    rf"\b(?:ich heiße|ich heisse|mein name ist|mein name lautet|mein name wäre)[ \t]+{_NAME}",
    rf"\bhier (?:spricht|ist)[ \t]+{_NAME}",
    rf"\bich bin(?:[ \t]+(?:der|die))?[ \t]+{_NAME}",
    rf"\bname(?:[ \t]*:[ \t]*|[ \t]+){_NAME}",
)

# Words that end a name when speech runs on ("anna schmidt und ich habe ...")
NAME_CONNECTORS = {
    "und", "ich", "habe", "hab", "mein", "meine", "meiner", "meinen",
    "telefon", "telefonnummer", "nummer", "handy", "das", "der", "die", "ist",
    "wegen", "weil", "möchte", "brauche", "bitte", "also", "aus", "hier",
    "am", "um", "mit", "zahnschmerzen", "schmerzen",
}

# "ich bin neu", "ich bin erkältet", "ich bin Privatpatientin" are not introductions
NOT_A_NAME = {
    "neu", "schon", "bereits", "zum", "patient", "patientin", "seit", "nicht",
    "sehr", "gerade", "ein", "eine", "krank", "da", "noch", "also", "heute",
    "morgen", "froh", "so", "gar", "wegen", "leider", "mir", "privat",
    "gesetzlich", "versichert", "bei", "unsicher", "erreichbar", "dran",
    "mal", "ganz", "wirklich", "total", "etwas", "auf", "in", "im",
    "erkältet", "verletzt", "verkühlt", "schwanger", "allergisch", "müde",
    "nervös", "besorgt", "unterwegs", "zuhause", "angemeldet", "krankgeschrieben",
}
PATIENT_SUFFIXES = ("patient", "patientin")


def _clean_name(raw: str) -> str:
    words = raw.split()
    first = words[0].lower() if words else ""
    if not first or first in NOT_A_NAME or first in NAME_CONNECTORS or first.endswith(PATIENT_SUFFIXES):
        return ""
    kept = []
    for word in words:
        if word.lower() in NAME_CONNECTORS:
            break
        kept.append(word)
    return " ".join(kept).strip(" -'")


# ── Phone ──

PHONE_PATTERNS = (
    r"(?:\+|00)\d{2}[\d \t\-/()]{6,}\d",
    r"\b0\d[\d \t\-/]{5,}\d",
    r"\b\d[\d \t\-/]{5,}\d",
)
MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15

# ── Reason ──

PAIN_KEYWORDS = (
    "zahnschmerzen", "zahnweh", "schmerzen", "schmerz", "tut weh", "tun weh",
    "schwellung", "geschwollen", "entzündung", "entzündet", "notfall", "akut",
    "abgebrochen", "blutet", "pochend",
)
PROCEDURE_KEYWORDS = (
    "kontrolltermin", "kontrolle", "untersuchung", "zahnreinigung", "reinigung",
    "putzen", "prophylaxe", "bleaching", "füllung", "plombe", "krone",
    "implantat", "zahnersatz", "weisheitszahn", "beratung",
)
_PAIN_INTRO = r"(?:ich habe|ich hab|mir tut|mir tun|wegen|grund|weil|das problem ist)"
_PROCEDURE_INTRO = r"(?:ich möchte|ich würde gern|ich würde gerne|ich hätte gern|ich hätte gerne|ich brauche|grund|wegen|weil|für)"

# ── Urgency ──

URGENT_KEYWORDS = (
    "schmerz", "pochend", "schwellung", "geschwollen", "entzündung", "notfall",
    "akut", "dringend", "schnell", "tut weh", "tun weh", "zahnweh",
) + URGENT_INDICATORS

# ── Preferred time ──

_DAYS = r"montag|dienstag|mittwoch|donnerstag|freitag|samstag|sonntag"
_WORD_DATE = (
    r"(?:übermorgen|(?<!guten )morgen|heute|nächste woche|kommende woche|diese woche"
    r"|so schnell wie möglich|so bald wie möglich|möglichst bald|sofort"
    rf"|nächsten (?:{_DAYS})|(?:am )?(?:{_DAYS})"
    r"|in \d+ ?tagen|in (?:einer|zwei|drei) wochen?)(?![a-zäöüß])"
)
_NUM_DATE = r"(?:am )?\d{1,2}\.\d{1,2}\.(?:\d{2,4})?"
_TIME_OF_DAY = (
    r"(?:[ \t,]+(?:um[ \t]+)?\d{1,2}(?:[:.]\d{2})?[ \t]*uhr"
    r"|[ \t]+(?:am vormittag|am nachmittag|am abend|vormittags?|nachmittags?|früh|abends?|mittags?))?"
)
_TIME = rf"((?:{_WORD_DATE}|{_NUM_DATE}){_TIME_OF_DAY})"

TIME_PATTERNS = (
    rf"(?:wunsch|möchte|würde|lieber|gerne|gern|am besten|passt|könnte|kann)[^.!?\n]*?(?:termin|zeit|kommen|vorbei|besuch)[^.!?\n]*?{_TIME}",
    rf"(?:wunsch|möchte|würde|lieber|gerne|gern|am besten|könnte|kann)[^.!?\n]*?{_TIME}[^.!?\n]*?(?:termin|kommen|vorbei)",
    _TIME,
)

# ── Patient type ──

NEW_PATIENT_PHRASES = (
    "bin zum ersten mal", "zum ersten mal bei ihnen", "bin neu", "neuer patient",
    "neue patientin", "noch nie bei ihnen", "war noch nie bei ihnen",
)
EXISTING_PATIENT_PHRASES = (
    "bin schon patient", "bin bereits", "schon bei ihnen", "war schon mal bei ihnen",
    "bestandspatient", "bin patient bei ihnen", "bin patientin bei ihnen",
)


class SlotMatcher:
    """One extraction rule for one memory slot."""

    slot = ""

    def match(self, text: str) -> str | None:
        raise NotImplementedError


class PatternMatcher(SlotMatcher):
    """Ordered regex templates; the first match that survives `clean` wins."""

    def __init__(self, slot: str, patterns, clean=None):
        self.slot = slot
        self.patterns = [re.compile(p, _FLAGS) for p in patterns]
        self.clean = clean

    def match(self, text: str) -> str | None:
        for pattern in self.patterns:
            for m in pattern.finditer(text):
                value = m.group(1) if pattern.groups else m.group(0)
                value = self.clean(value) if self.clean else value.strip()
                if value:
                    return value
        return None


class PhoneMatcher(SlotMatcher):
    slot = "phone"

    def __init__(self, patterns=PHONE_PATTERNS):
        self.patterns = [re.compile(p) for p in patterns]

    def match(self, text: str) -> str | None:
        for pattern in self.patterns:
            for m in pattern.finditer(text):
                candidate = m.group(0).strip()
                digit_count = sum(ch.isdigit() for ch in candidate)
                if MIN_PHONE_DIGITS <= digit_count <= MAX_PHONE_DIGITS:
                    return candidate
        return self._match_spoken(text)

    def _match_spoken(self, text: str) -> str | None:
        """Longest run of spoken digits, e.g. "null eins sieben sechs ..."."""
        tokens = re.findall(r"[a-zäöüß]+|\d+", text.lower())
        best, run = "", ""
        for tok in tokens:
            digits = words_to_digits(tok)
            if digits:
                run += digits
            else:
                best = max(best, run, key=len)
                run = ""
        best = max(best, run, key=len)
        if MIN_PHONE_DIGITS <= len(best) <= MAX_PHONE_DIGITS:
            return best
        return None


class ReasonMatcher(SlotMatcher):
    """Pain clause first, then procedure clause, then the sentence holding a keyword."""

    slot = "reason"

    def match(self, text: str) -> str | None:
        lower = text.lower()
        for intro, keywords in (
            (_PAIN_INTRO, PAIN_KEYWORDS),
            (_PROCEDURE_INTRO, PROCEDURE_KEYWORDS),
        ):
            for keyword in keywords:
                if keyword not in lower:
                    continue
                m = re.search(
                    rf"{intro}[^.!?\n]*{re.escape(keyword)}[^.!?\n,]*", text, _FLAGS
                )
                if m:
                    return m.group(0).strip()
        for keywords in (PAIN_KEYWORDS, PROCEDURE_KEYWORDS):
            for sentence in re.split(r"[.!?\n]+", text):
                if contains_any(sentence, keywords):
                    return sentence.strip()
        return None


class UrgencyMatcher(SlotMatcher):
    slot = "urgency"

    def match(self, text: str) -> str | None:
        return "akut" if contains_any(text, URGENT_KEYWORDS) else None


class PatientTypeMatcher(SlotMatcher):
    slot = "patient_type"

    def match(self, text: str) -> str | None:
        if contains_any(text, NEW_PATIENT_PHRASES):
            return "neu"
        if contains_any(text, EXISTING_PATIENT_PHRASES):
            return "bestehend"
        return None


DEFAULT_MATCHERS = (
    PatternMatcher("name", NAME_PATTERNS, clean=_clean_name),
    PhoneMatcher(),
    ReasonMatcher(),
    UrgencyMatcher(),
    PatternMatcher("preferred_time", TIME_PATTERNS),
    PatientTypeMatcher(),
)


def extract_from_text(text: str, matchers=DEFAULT_MATCHERS) -> Memory:
    values = {}
    for matcher in matchers:
        if values.get(matcher.slot):
            continue
        try:
            value = matcher.match(text)
        except Exception as e:
            logger.error("Matcher %s failed: %s", matcher.slot, e)
            value = None
        if value:
            values[matcher.slot] = value

    # Urgency stays unset until there is something to grade
    if not values.get("urgency") and values.get("reason"):
        values["urgency"] = "normal"
    return Memory(**values)


def extract_memory(turns: list[dict], latest: str = "", matchers=DEFAULT_MATCHERS) -> Memory:
    """Derive a Memory from the caller turns plus the latest utterance."""
    return extract_from_text(caller_text(turns, latest), matchers)
