import pytest
from unittest.mock import AsyncMock

from selaro.session import ConversationState
from selaro.state_machine import StateMachine

SUMMARY_REPLY = (
    "LEAD SUMMARY\n"
    "Name: Anna Schmidt\n"
    "Telefon: 0176 1234567\n"
    "Grund: Zahnschmerzen\n"
    "Wunschtermin: morgen 10 Uhr\n"
    "\n"
    "Vielen Dank! Ich habe alle Daten notiert. Das Praxisteam meldet sich "
    "zur Bestätigung bei Ihnen. Einen schönen Tag!"
)

CLINIC_ROW = {
    "id": "clinic-1",
    "name": "Zahnarztpraxis Test",
    "phone_number": "+49 341 555555",
    "address": "Teststraße 1, Leipzig",
    "instructions": "Öffnungszeiten: Mo-Fr 9-18 Uhr.",
}


@pytest.fixture
def session():
    return ConversationState(session_id="CA_test", caller_phone="+4917612345678")


@pytest.fixture
def machine():
    return StateMachine()


@pytest.fixture
def store():
    """Datastore double with PostgREST-shaped return values."""
    mock = AsyncMock()
    mock.get_clinic.return_value = dict(CLINIC_ROW)
    mock.insert_lead.side_effect = lambda row: {"id": "lead-1", **row}
    mock.list_leads.return_value = []
    return mock


@pytest.fixture
def llm():
    mock = AsyncMock()
    mock.complete.return_value = "Darf ich Ihren Namen erfahren?"
    return mock
