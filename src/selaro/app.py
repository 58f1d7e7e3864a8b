import logging
import secrets
import string
import time
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from selaro.config import Settings, validate_config
from selaro.dashboard import router as dashboard_router
from selaro.leads import LeadGateway
from selaro.llm import OpenAIChatClient
from selaro.notifications import EmailNotifier, NotificationQueue
from selaro.processor import TurnOrchestrator
from selaro.session_store import SessionStore
from selaro.state_machine import CHAT_APOLOGY, VOICE_APOLOGY
from selaro.store import SupabaseClient
from selaro.twiml import gather_response, say_and_hangup
from selaro.validation import is_non_empty, sanitize_string

load_dotenv()

logger = logging.getLogger(__name__)

# Twilio call statuses after which no more webhooks arrive for the call
FINAL_CALL_STATUSES = {"completed", "busy", "failed", "no-answer", "canceled"}

_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_chat_session_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"sim-{int(time.time() * 1000)}-{suffix}"


def _xml(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


def create_app(
    settings: Settings | None = None,
    *,
    store: SupabaseClient | None = None,
    llm: OpenAIChatClient | None = None,
    notifier: EmailNotifier | None = None,
    sessions: SessionStore | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    if store is None:
        store = SupabaseClient(settings.supabase_url, settings.supabase_key)
    if llm is None:
        llm = OpenAIChatClient(settings.openai_api_key, model=settings.openai_model)
    if notifier is None:
        notifier = EmailNotifier(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_pass,
            recipient=settings.notification_email,
        )
    if sessions is None:
        # An empty store is falsy (it has __len__)
        sessions = SessionStore(ttl_seconds=settings.session_ttl_seconds)
    queue = NotificationQueue(notifier)
    orchestrator = TurnOrchestrator(
        sessions=sessions,
        llm=llm,
        store=store,
        gateway=LeadGateway(store, queue),
        clinic_id=settings.clinic_id,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        queue.start()
        logger.info("Selaro agent started (clinic=%s)", settings.clinic_id)
        yield
        await queue.stop()
        await store.close()
        await llm.close()

    app = FastAPI(title="Selaro Receptionist", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store
    app.state.sessions = sessions
    app.state.notifications = queue
    app.state.orchestrator = orchestrator
    app.include_router(dashboard_router)

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/api/twilio/voice/step")
    async def voice_step(request: Request):
        """Twilio speech webhook. Always answers with valid TwiML."""
        form = await request.form()
        call_sid = form.get("CallSid") or f"twilio-{int(time.time() * 1000)}"
        speech = (form.get("SpeechResult") or "").strip()
        caller = form.get("From") or ""

        try:
            if not speech:
                result = await orchestrator.start_session(call_sid, "twilio", caller)
                return _xml(gather_response(result.reply))

            result = await orchestrator.handle_turn(call_sid, speech, "twilio", caller)
        except Exception:
            logger.exception("Voice turn failed for %s", call_sid)
            return _xml(say_and_hangup(VOICE_APOLOGY))

        if result.failed:
            return _xml(say_and_hangup(VOICE_APOLOGY))
        if result.end_call:
            return _xml(say_and_hangup(result.reply))
        return _xml(gather_response(result.reply))

    @app.post("/api/twilio/voice/status")
    async def voice_status(request: Request):
        form = await request.form()
        call_sid = form.get("CallSid") or ""
        status = form.get("CallStatus") or ""
        logger.info("Call status %s: %s", call_sid, status)
        if call_sid and status in FINAL_CALL_STATUSES:
            await orchestrator.end_session(call_sid)
        return PlainTextResponse("ok")

    @app.get("/api/simulate")
    async def simulate_start():
        session_id = new_chat_session_id()
        result = await orchestrator.start_session(session_id, "simulate")
        return {"ok": True, "sessionId": session_id, "reply": result.reply, "state": result.state.value}

    @app.post("/api/simulate")
    async def simulate_turn(request: Request):
        try:
            body = await request.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message")
        if not is_non_empty(message):
            return JSONResponse({"ok": False, "error": "Message is required"}, status_code=400)

        session_id = body.get("sessionId") or new_chat_session_id()
        failure = JSONResponse(
            {"ok": False, "reply": CHAT_APOLOGY, "sessionId": session_id, "error": "Internal server error"},
            status_code=500,
        )
        try:
            if session_id not in sessions:
                await orchestrator.start_session(session_id, "simulate")
            result = await orchestrator.handle_turn(session_id, sanitize_string(message), "simulate")
        except Exception:
            logger.exception("Chat turn failed for %s", session_id)
            return failure
        if result.failed:
            return failure

        return {
            "ok": True,
            "reply": result.reply,
            "sessionId": session_id,
            "state": result.state.value,
            "extracted": result.extracted,
            "leadSaved": result.lead is not None,
        }

    return app


def main():
    validate_config()
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
