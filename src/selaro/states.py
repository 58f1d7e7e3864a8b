from enum import Enum

LEAD_OPEN_STATES = {"collecting", "ready_to_close"}


class State(Enum):
    FRESH = "fresh"
    COLLECTING = "collecting"
    READY_TO_CLOSE = "ready_to_close"
    CLOSED = "closed"

    @property
    def accepts_lead(self) -> bool:
        """A lead write may still happen in this state."""
        return self.value in LEAD_OPEN_STATES

    @property
    def is_closed(self) -> bool:
        return self is State.CLOSED


def derive_state(turn_count: int, missing: list[str], lead_persisted: bool) -> State:
    """Compute the conversation state from its three observable inputs."""
    if lead_persisted:
        return State.CLOSED
    if turn_count == 0:
        return State.FRESH
    if not missing:
        return State.READY_TO_CLOSE
    return State.COLLECTING
