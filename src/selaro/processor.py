import logging
import time
from dataclasses import dataclass, field

from selaro.leads import LeadGateway
from selaro.lead_summary import detect_lead_summary
from selaro.llm import LLMError, OpenAIChatClient
from selaro.prompts import build_system_prompt
from selaro.session import ConversationState
from selaro.session_store import SessionStore
from selaro.state_machine import StateMachine
from selaro.states import State
from selaro.store import SupabaseClient, load_clinic
from selaro.transcript import chunk_transcript_dump, to_timestamped_dump, user_text
from selaro.validation import classify_urgency

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    session_id: str
    reply: str
    state: State
    end_call: bool = False
    extracted: dict = field(default_factory=dict)
    lead: dict | None = None
    failed: bool = False


class TurnOrchestrator:
    """Drives one conversation turn from inbound text to the reply.

    Turns for one session run under that session's lock:
      load session -> StateMachine.process() -> clinic read -> prompt
      -> language model -> record reply -> lead summary -> lead write

    A model failure yields a TurnResult with failed=True; the caller picks
    the apology for its surface. Lead problems never affect the reply.
    """

    def __init__(
        self,
        sessions: SessionStore,
        llm: OpenAIChatClient,
        store: SupabaseClient,
        gateway: LeadGateway,
        clinic_id: str,
        machine: StateMachine | None = None,
    ):
        self.sessions = sessions
        self.llm = llm
        self.store = store
        self.gateway = gateway
        self.clinic_id = clinic_id
        self.machine = machine or StateMachine()

    async def start_session(self, session_id: str, source: str = "twilio", caller_phone: str = "") -> TurnResult:
        async with self.sessions.lock(session_id):
            session, _ = self.sessions.get_or_create(
                session_id, source=source, caller_phone=caller_phone
            )
            action = self.machine.start(session)
            return TurnResult(session_id=session_id, reply=action.speak, state=session.state)

    async def handle_turn(
        self,
        session_id: str,
        text: str,
        source: str = "twilio",
        caller_phone: str = "",
    ) -> TurnResult:
        async with self.sessions.lock(session_id):
            session, created = self.sessions.get_or_create(
                session_id, source=source, caller_phone=caller_phone
            )
            if created:
                logger.info("[%s] first turn without a greeting", session_id)

            action = self.machine.process(session, text)
            result = TurnResult(
                session_id=session_id,
                reply=action.speak,
                state=session.state,
                end_call=action.end_call,
                extracted=action.new_fields,
            )
            if not action.needs_llm:
                return result

            clinic = await load_clinic(self.store, self.clinic_id)
            prompt = build_system_prompt(clinic.name, clinic.instructions, session.memory, session.missing)
            try:
                reply = await self.llm.complete(prompt, session.turns)
            except LLMError as e:
                logger.error("[%s] language model failed: %s", session_id, e)
                result.failed = True
                return result

            self.machine.record_reply(session, reply)
            result.reply = reply

            if action.attempt_lead and not session.state.is_closed:
                result.lead = await self._attempt_lead(session, reply)
            result.state = session.state
            return result

    async def _attempt_lead(self, session: ConversationState, reply: str) -> dict | None:
        summary = detect_lead_summary(reply)
        if summary is None:
            return None

        self.machine.apply_summary(session, summary)
        urgency = classify_urgency(summary.reason, user_text(session.turns))
        try:
            lead = await self.gateway.save_lead(
                name=summary.name,
                phone=summary.phone,
                reason=summary.reason,
                preferred_time=summary.preferred_time,
                urgency=urgency,
                source=session.source,
                raw_text=reply,
                session_ref=session.session_id,
            )
        except Exception as e:
            logger.error("[%s] lead save raised, conversation continues: %s", session.session_id, e)
            return None

        if lead:
            self.machine.handle_lead_saved(session, lead)
        return lead

    async def end_session(self, session_id: str) -> list[str]:
        """Log the transcript dump and forget the session. Returns the dump lines.

        Waits for a turn already running on the session so the dump and the
        lead id reflect it.
        """
        async with self.sessions.lock(session_id):
            session = self.sessions.discard(session_id)
        if session is None:
            return []

        dump = to_timestamped_dump(
            session.turns,
            start_time=session.started_at,
            session_id=session.session_id,
            phone=session.caller_phone,
            final_state=session.state.value,
        )
        dump["duration_s"] = round(time.time() - session.started_at, 1)
        dump["lead_id"] = session.lead_id
        lines = chunk_transcript_dump(dump)
        for line in lines:
            logger.info(line)
        logger.info(
            "Session ended %s: state=%s lead=%s", session_id, session.state.value, session.lead_persisted
        )
        return lines
