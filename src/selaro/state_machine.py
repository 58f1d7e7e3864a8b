import logging
from dataclasses import dataclass, field, fields

from selaro.extraction import extract_memory
from selaro.lead_summary import LeadSummary
from selaro.session import ConversationState, Memory
from selaro.validation import detect_farewell

logger = logging.getLogger(__name__)

GREETING = (
    "Guten Tag, Sie sind mit der Zahnarztpraxis Stela Xhelili in der "
    "Karl-Liebknecht-Straße 1 in Leipzig verbunden. Wie kann ich Ihnen helfen?"
)
REPROMPT = "Entschuldigung, ich habe Sie nicht verstanden. Wie kann ich Ihnen helfen?"
GOODBYE = "Vielen Dank für Ihren Anruf. Auf Wiederhören und einen schönen Tag!"
NO_INPUT_GOODBYE = "Vielen Dank für Ihren Anruf. Wir melden uns bald. Auf Wiederhören!"

# Canned replies when the language model is unavailable
VOICE_APOLOGY = "Es ist ein technischer Fehler aufgetreten. Bitte rufen Sie später noch einmal an."
CHAT_APOLOGY = (
    "Es tut mir leid, es ist ein technischer Fehler aufgetreten. "
    "Bitte versuchen Sie es später erneut."
)


@dataclass
class Action:
    speak: str = ""
    end_call: bool = False
    needs_llm: bool = True
    attempt_lead: bool = False
    new_fields: dict = field(default_factory=dict)


class StateMachine:
    def start(self, session: ConversationState) -> Action:
        """Open a conversation. A session that already has turns gets a re-prompt."""
        if session.turns:
            session.add_turn("assistant", REPROMPT)
            return Action(speak=REPROMPT, needs_llm=False)
        session.add_turn("assistant", GREETING)
        return Action(speak=GREETING, needs_llm=False)

    def process(self, session: ConversationState, user_text: str) -> Action:
        session.turn_count += 1
        session.add_turn("user", user_text)
        new_fields = self.update_memory(session, user_text)

        logger.info(
            "[%s] turn=%d state=%s memory=%s missing=%s",
            session.session_id,
            session.turn_count,
            session.state.value,
            session.memory.filled(),
            session.missing,
        )

        handler = getattr(self, f"_handle_{session.state.value}", None)
        action = handler(session, user_text) if handler else Action()
        action.attempt_lead = session.state.accepts_lead
        action.new_fields = new_fields
        return action

    def update_memory(self, session: ConversationState, user_text: str) -> dict:
        """Re-run extraction and merge it in. Returns slots that were empty before."""
        before = session.memory
        session.memory = before.merge(extract_memory(session.turns, user_text))
        return {
            name: value
            for name, value in session.memory.filled().items()
            if not getattr(before, name)
        }

    def record_reply(self, session: ConversationState, reply: str) -> None:
        session.add_turn("assistant", reply)

    def apply_summary(self, session: ConversationState, summary: LeadSummary) -> None:
        """Fill slots the extractor never found from a parsed summary."""
        from_summary = Memory(**{
            f.name: getattr(summary, f.name, None) for f in fields(Memory)
        })
        session.memory = from_summary.merge(session.memory)

    def handle_lead_saved(self, session: ConversationState, lead: dict) -> None:
        session.lead_persisted = True
        session.lead_id = str(lead.get("id", ""))
        logger.info("[%s] lead saved: %s", session.session_id, session.lead_id)

    # ── State handlers ──

    def _handle_closed(self, session: ConversationState, text: str) -> Action:
        # Lead completion alone never ends the call; only the caller saying goodbye does
        if detect_farewell(text):
            session.add_turn("assistant", GOODBYE)
            return Action(speak=GOODBYE, end_call=True, needs_llm=False)
        return Action()
