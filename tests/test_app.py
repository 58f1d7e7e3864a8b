import xml.etree.ElementTree as ET

import pytest
from fastapi.testclient import TestClient

from selaro.app import create_app, main, new_chat_session_id
from selaro.config import Settings
from selaro.llm import LLMError
from selaro.notifications import EmailNotifier
from selaro.session_store import SessionStore
from selaro.state_machine import CHAT_APOLOGY, GOODBYE, GREETING, NO_INPUT_GOODBYE, VOICE_APOLOGY
from selaro.store import StoreError

from conftest import SUMMARY_REPLY

STEP = "/api/twilio/voice/step"


@pytest.fixture
def sessions():
    return SessionStore()


@pytest.fixture
def client(store, llm, sessions):
    app = create_app(
        Settings(clinic_id="clinic-1"),
        store=store,
        llm=llm,
        notifier=EmailNotifier(),
        sessions=sessions,
    )
    with TestClient(app) as c:
        yield c


def twiml(resp):
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/xml")
    return ET.fromstring(resp.content)


def test_health(client):
    assert client.get("/health").text == "ok"


def test_chat_session_id_format():
    sid = new_chat_session_id()
    prefix, ms, suffix = sid.split("-")
    assert prefix == "sim"
    assert ms.isdigit()
    assert len(suffix) == 9


class TestVoiceStep:
    def test_first_request_greets_and_gathers(self, client, sessions):
        root = twiml(client.post(STEP, data={"CallSid": "CA1", "From": "+4917612345678"}))
        gather = root.find("Gather")
        assert gather.get("input") == "speech"
        assert gather.get("action") == STEP
        assert gather.get("language") == "de-DE"
        assert gather.find("Say").text == GREETING
        assert root.find("Say").text == NO_INPUT_GOODBYE
        assert root.find("Hangup") is not None
        assert sessions.get("CA1").caller_phone == "+4917612345678"

    def test_speech_gets_llm_reply(self, client, llm):
        client.post(STEP, data={"CallSid": "CA1"})
        root = twiml(client.post(STEP, data={"CallSid": "CA1", "SpeechResult": "Ich habe Zahnschmerzen"}))
        assert root.find("Gather/Say").text == "Darf ich Ihren Namen erfahren?"
        llm.complete.assert_awaited_once()

    def test_empty_speech_on_known_call_reprompts(self, client, sessions):
        client.post(STEP, data={"CallSid": "CA1"})
        client.post(STEP, data={"CallSid": "CA1", "SpeechResult": "Hallo"})
        root = twiml(client.post(STEP, data={"CallSid": "CA1", "SpeechResult": "  "}))
        assert "nicht verstanden" in root.find("Gather/Say").text
        assert sessions.get("CA1").turn_count == 1

    def test_llm_failure_apologizes_and_hangs_up(self, client, llm):
        llm.complete.side_effect = LLMError("timeout")
        root = twiml(client.post(STEP, data={"CallSid": "CA1", "SpeechResult": "Hallo"}))
        assert root.find("Gather") is None
        assert root.find("Say").text == VOICE_APOLOGY
        assert root.find("Hangup") is not None

    def test_farewell_after_lead_hangs_up(self, client, llm, store):
        llm.complete.return_value = SUMMARY_REPLY
        client.post(STEP, data={"CallSid": "CA1"})
        root = twiml(client.post(STEP, data={"CallSid": "CA1", "SpeechResult": "Hallo"}))
        assert root.find("Gather") is not None
        store.insert_lead.assert_awaited_once()

        root = twiml(client.post(STEP, data={"CallSid": "CA1", "SpeechResult": "Danke, tschüss"}))
        assert root.find("Gather") is None
        assert root.find("Say").text == GOODBYE


class TestVoiceStatus:
    def test_final_status_discards_session(self, client, sessions):
        client.post(STEP, data={"CallSid": "CA1"})
        resp = client.post("/api/twilio/voice/status", data={"CallSid": "CA1", "CallStatus": "completed"})
        assert resp.status_code == 200
        assert "CA1" not in sessions

    def test_in_progress_keeps_session(self, client, sessions):
        client.post(STEP, data={"CallSid": "CA1"})
        client.post("/api/twilio/voice/status", data={"CallSid": "CA1", "CallStatus": "in-progress"})
        assert "CA1" in sessions


class TestSimulate:
    def test_get_starts_session(self, client, sessions):
        body = client.get("/api/simulate").json()
        assert body["ok"] is True
        assert body["reply"] == GREETING
        assert body["sessionId"].startswith("sim-")
        assert body["sessionId"] in sessions

    @pytest.mark.parametrize("payload", [{}, {"message": ""}, {"message": "   "}, {"message": 5}])
    def test_missing_message_is_400(self, client, payload):
        resp = client.post("/api/simulate", json=payload)
        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "error": "Message is required"}

    def test_invalid_json_is_400(self, client):
        resp = client.post("/api/simulate", content=b"not json", headers={"content-type": "application/json"})
        assert resp.status_code == 400

    def test_turn_reply(self, client, sessions):
        resp = client.post("/api/simulate", json={"message": "Ich heiße Anna Schmidt"})
        body = resp.json()
        assert resp.status_code == 200
        assert body["ok"] is True
        assert body["reply"] == "Darf ich Ihren Namen erfahren?"
        assert body["extracted"] == {"name": "Anna Schmidt"}
        assert body["leadSaved"] is False
        session = sessions.get(body["sessionId"])
        assert session.source == "simulate"
        assert session.turns[0]["content"] == GREETING

    def test_message_is_flattened_to_one_line(self, client, sessions):
        body = client.post("/api/simulate", json={"message": "  Hallo\nich heiße Anna Schmidt\t"}).json()
        assert sessions.get(body["sessionId"]).turns[1]["content"] == "Hallo ich heiße Anna Schmidt"
        assert body["extracted"] == {"name": "Anna Schmidt"}

    def test_session_is_continued(self, client, sessions):
        sid = client.get("/api/simulate").json()["sessionId"]
        client.post("/api/simulate", json={"sessionId": sid, "message": "Hallo"})
        client.post("/api/simulate", json={"sessionId": sid, "message": "Ich heiße Anna Schmidt"})
        assert sessions.get(sid).turn_count == 2
        assert len(sessions) == 1

    def test_lead_saved_with_simulate_source(self, client, llm, store):
        llm.complete.return_value = SUMMARY_REPLY
        body = client.post("/api/simulate", json={"message": "Hallo"}).json()
        assert body["leadSaved"] is True
        assert body["state"] == "closed"
        assert store.insert_lead.await_args.args[0]["source"] == "simulate"

    def test_llm_failure_is_500_with_apology(self, client, llm):
        llm.complete.side_effect = LLMError("down")
        resp = client.post("/api/simulate", json={"sessionId": "sim-x", "message": "Hallo"})
        assert resp.status_code == 500
        body = resp.json()
        assert body["ok"] is False
        assert body["reply"] == CHAT_APOLOGY
        assert body["sessionId"] == "sim-x"


class TestLeadsApi:
    def test_list(self, client, store):
        store.list_leads.return_value = [{"id": "1"}]
        assert client.get("/api/leads").json() == {"ok": True, "data": [{"id": "1"}]}
        store.list_leads.assert_awaited_with(20)

    def test_list_store_error(self, client, store):
        store.list_leads.side_effect = StoreError("down")
        resp = client.get("/api/leads")
        assert resp.status_code == 500
        assert resp.json()["ok"] is False

    def test_update_status(self, client, store):
        store.update_lead.return_value = {"id": "1", "status": "scheduled"}
        resp = client.post("/api/leads/update-status", json={"id": "1", "status": "scheduled"})
        assert resp.json()["lead"]["status"] == "scheduled"
        store.update_lead.assert_awaited_once_with("1", {"status": "scheduled"})

    @pytest.mark.parametrize("payload", [{"status": "new"}, {"id": "1", "status": "done"}, {"id": "1"}])
    def test_update_status_rejects(self, client, store, payload):
        resp = client.post("/api/leads/update-status", json=payload)
        assert resp.status_code == 400
        store.update_lead.assert_not_awaited()

    def test_update_status_unknown_lead(self, client, store):
        store.update_lead.return_value = None
        resp = client.post("/api/leads/update-status", json={"id": "x", "status": "lost"})
        assert resp.status_code == 404

    def test_update_notes_sanitizes(self, client, store):
        store.update_lead.return_value = {"id": "1"}
        client.post("/api/leads/update-notes", json={"id": "1", "notes": "Rückruf\nmorgen"})
        store.update_lead.assert_awaited_once_with("1", {"notes": "Rückruf morgen"})

    def test_update_notes_requires_id(self, client):
        assert client.post("/api/leads/update-notes", json={"notes": "x"}).status_code == 400

    def test_create_manual(self, client, store):
        resp = client.post("/api/leads/create-manual", json={
            "name": "Anna Schmidt",
            "phone": "0176 1234567",
            "reason": "Zahnschmerzen",
            "urgency": "akut",
        })
        body = resp.json()
        assert body["ok"] is True
        assert body["lead_id"] == "lead-1"
        row = store.insert_lead.await_args.args[0]
        assert row["source"] == "manual"
        assert row["status"] == "callback"

    def test_create_manual_requires_fields(self, client):
        resp = client.post("/api/leads/create-manual", json={"name": "Anna", "reason": "x"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Phone is required"


class TestClinicApi:
    def _payload(self, **overrides):
        return {
            "name": "Praxis Test",
            "phone_number": "+49 341 555555",
            "instructions": "  Mo-Fr 9-18 Uhr  ",
            "address": "-",
            **overrides,
        }

    def test_update(self, client, store):
        store.update_clinic.return_value = {"id": "clinic-1", "name": "Praxis Test"}
        resp = client.post("/api/clinic/update", json=self._payload())
        assert resp.json()["ok"] is True
        store.update_clinic.assert_awaited_once_with("clinic-1", {
            "name": "Praxis Test",
            "phone_number": "+49 341 555555",
            "instructions": "Mo-Fr 9-18 Uhr",
        })

    def test_address_is_kept(self, client, store):
        store.update_clinic.return_value = {"id": "clinic-1"}
        client.post("/api/clinic/update", json=self._payload(address="Teststraße 1"))
        assert store.update_clinic.await_args.args[1]["address"] == "Teststraße 1"

    @pytest.mark.parametrize("overrides", [
        {"name": ""},
        {"phone_number": "123"},
        {"instructions": "x" * 10001},
    ])
    def test_rejects_invalid(self, client, store, overrides):
        resp = client.post("/api/clinic/update", json=self._payload(**overrides))
        assert resp.status_code == 400
        store.update_clinic.assert_not_awaited()

    def test_unknown_clinic(self, client, store):
        store.update_clinic.return_value = None
        assert client.post("/api/clinic/update", json=self._payload()).status_code == 404


class TestTestTools:
    def test_config_returns_clinic(self, client):
        body = client.get("/api/test/config").json()
        assert body["config"]["name"] == "Zahnarztpraxis Test"

    def test_nlu(self, client):
        body = client.post("/api/test/nlu", json={"message": "Ich habe starke Zahnschmerzen"}).json()
        assert body["ok"] is True
        assert body["urgency"] == "akut"
        assert body["intent"] == "urgent_appointment_request"

    def test_nlu_requires_message(self, client):
        assert client.post("/api/test/nlu", json={}).status_code == 400

    def test_notifications(self, client, store):
        store.list_leads.return_value = []
        body = client.get("/api/notifications").json()
        assert body == {"ok": True, "notifications": []}
        store.list_leads.assert_awaited_with(100)


def test_main_rejects_bad_port_before_startup(monkeypatch, capsys):
    for var in ("OPENAI_API_KEY", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "CLINIC_ID"):
        monkeypatch.setenv(var, "x")
    monkeypatch.setenv("SMTP_PORT", "abc")
    started = []
    monkeypatch.setattr("selaro.app.uvicorn.run", lambda *args, **kwargs: started.append(args))
    with pytest.raises(SystemExit):
        main()
    assert "FATAL" in capsys.readouterr().err
    assert started == []
