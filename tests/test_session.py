from selaro.session import ConversationState, Memory, REQUIRED_FIELDS, missing_fields
from selaro.states import State


def test_required_field_order():
    assert REQUIRED_FIELDS == ("name", "phone", "reason", "preferred_time")


def test_missing_fields_canonical_order():
    memory = Memory(name="Anna Schmidt")
    assert missing_fields(memory) == ["phone", "reason", "preferred_time"]


def test_missing_fields_ignores_optional_slots():
    memory = Memory(name="A", phone="0176 1234567", reason="Kontrolle", preferred_time="morgen")
    assert missing_fields(memory) == []


def test_empty_string_counts_as_missing():
    assert missing_fields(Memory(name="", phone="123")) == ["name", "reason", "preferred_time"]


class TestMerge:
    def test_newer_value_wins(self):
        merged = Memory(preferred_time="morgen").merge(Memory(preferred_time="Freitag"))
        assert merged.preferred_time == "Freitag"

    def test_filled_slot_never_cleared(self):
        merged = Memory(name="Anna", phone="0176 1234567").merge(Memory())
        assert merged.name == "Anna"
        assert merged.phone == "0176 1234567"

    def test_merge_returns_new_object(self):
        old = Memory(name="Anna")
        merged = old.merge(Memory(phone="0341 998877"))
        assert old.phone is None
        assert merged.name == "Anna"
        assert merged.phone == "0341 998877"


class TestConversationState:
    def test_defaults(self):
        state = ConversationState(session_id="CA1")
        assert state.source == "twilio"
        assert state.turns == []
        assert state.lead_persisted is False
        assert state.state is State.FRESH

    def test_add_turn_records_state(self):
        state = ConversationState(session_id="CA1")
        state.add_turn("assistant", "Guten Tag")
        turn = state.turns[0]
        assert turn["role"] == "assistant"
        assert turn["content"] == "Guten Tag"
        assert turn["state"] == "fresh"
        assert "timestamp" in turn

    def test_state_follows_memory(self):
        state = ConversationState(session_id="CA1")
        state.add_turn("assistant", "Guten Tag")
        assert state.state is State.COLLECTING
        state.memory = Memory(name="A", phone="0176 1234567", reason="Kontrolle", preferred_time="morgen")
        assert state.state is State.READY_TO_CLOSE
        state.lead_persisted = True
        assert state.state is State.CLOSED
