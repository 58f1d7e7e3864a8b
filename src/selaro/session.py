import time
from dataclasses import dataclass, field, fields
from typing import Optional

from selaro.states import State, derive_state

# Canonical order: the first missing field is the next question.
REQUIRED_FIELDS = ("name", "phone", "reason", "preferred_time")


@dataclass
class Memory:
    """Slots extracted from the caller's side of the conversation."""

    name: Optional[str] = None
    phone: Optional[str] = None
    reason: Optional[str] = None
    urgency: Optional[str] = None  # "akut" | "normal"
    preferred_time: Optional[str] = None
    patient_type: Optional[str] = None  # "neu" | "bestehend"

    def merge(self, newer: "Memory") -> "Memory":
        """Overlay `newer` onto this memory. A filled slot is never cleared."""
        merged = {}
        for f in fields(self):
            value = getattr(newer, f.name)
            merged[f.name] = value if value else getattr(self, f.name)
        return Memory(**merged)

    def filled(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def missing_fields(memory: Memory) -> list[str]:
    """Required fields that are still unset, in canonical order."""
    return [name for name in REQUIRED_FIELDS if not getattr(memory, name)]


@dataclass
class ConversationState:
    session_id: str
    source: str = "twilio"  # "twilio" | "simulate"
    caller_phone: str = ""

    # Append-only, replayed to the language model every turn
    turns: list = field(default_factory=list)
    memory: Memory = field(default_factory=Memory)

    # Set exactly once, after the lead insert succeeded
    lead_persisted: bool = False
    lead_id: str = ""

    # Metadata
    started_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.monotonic)
    turn_count: int = 0

    @property
    def missing(self) -> list[str]:
        return missing_fields(self.memory)

    @property
    def state(self) -> State:
        return derive_state(len(self.turns), self.missing, self.lead_persisted)

    def add_turn(self, role: str, content: str) -> None:
        self.turns.append({
            "role": role,
            "content": content,
            "timestamp": time.time(),
            "state": self.state.value,
        })
