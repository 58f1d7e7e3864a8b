import json

from selaro.transcript import (
    DUMP_PREFIX,
    caller_text,
    chunk_transcript_dump,
    to_llm_messages,
    to_timestamped_dump,
)


def _turns():
    return [
        {"role": "assistant", "content": "Guten Tag.", "timestamp": 1000.0, "state": "fresh"},
        {"role": "user", "content": "Ich heiße  Anna", "timestamp": 1002.3, "state": "collecting"},
        {"role": "assistant", "content": "Und Ihre Nummer?", "timestamp": 1004.0, "state": "collecting"},
        {"role": "user", "content": "0176 1234567", "timestamp": 1008.9, "state": "collecting"},
    ]


class TestCallerText:
    def test_only_user_turns(self):
        assert caller_text(_turns()) == "Ich heiße Anna\n0176 1234567"

    def test_latest_appended(self):
        assert caller_text(_turns()[:2], "morgen").endswith("\nmorgen")

    def test_latest_not_duplicated(self):
        assert caller_text(_turns(), "0176 1234567").count("0176 1234567") == 1

    def test_empty(self):
        assert caller_text([]) == ""


def test_llm_messages_start_with_system_prompt():
    messages = to_llm_messages("SYSTEM", _turns())
    assert messages[0] == {"role": "system", "content": "SYSTEM"}
    assert [m["role"] for m in messages[1:]] == ["assistant", "user", "assistant", "user"]
    assert "timestamp" not in messages[1]


class TestToTimestampedDump:
    def test_relative_timestamps(self):
        result = to_timestamped_dump(_turns(), 1000.0, "CA_test", "+49", "closed")
        assert result["session_id"] == "CA_test"
        assert result["final_state"] == "closed"
        assert [e["t"] for e in result["entries"]] == [0.0, 2.3, 4.0, 8.9]
        assert result["entries"][1]["state"] == "collecting"

    def test_start_time_zero_falls_back_to_first_entry(self):
        result = to_timestamped_dump(_turns(), 0, "CA_test", "+49", "closed")
        assert result["entries"][0]["t"] == 0.0

    def test_entry_missing_timestamp_is_skipped(self):
        turns = _turns() + [{"role": "user", "content": "ohne Zeit"}]
        result = to_timestamped_dump(turns, 1000.0, "CA_test", "+49", "closed")
        assert len(result["entries"]) == 4


class TestChunkTranscriptDump:
    def test_small_dump_is_one_chunk(self):
        dump = to_timestamped_dump(_turns(), 1000.0, "CA_test", "+49", "closed")
        lines = chunk_transcript_dump(dump)
        assert len(lines) == 1
        assert lines[0].startswith(f"{DUMP_PREFIX}|1/1|")
        body = json.loads(lines[0].split("|", 2)[2])
        assert body["session_id"] == "CA_test"
        assert len(body["entries"]) == 4

    def test_large_dump_is_split(self):
        entries = [
            {"t": float(i), "role": "user", "state": "collecting", "content": "ä" * 200}
            for i in range(30)
        ]
        dump = {"session_id": "CA_big", "phone": "+49", "final_state": "collecting", "entries": entries}
        lines = chunk_transcript_dump(dump, max_bytes=1000)
        assert len(lines) > 1
        assert all(len(line.encode("utf-8")) < 1100 for line in lines)

        total = len(lines)
        restored = []
        for i, line in enumerate(lines):
            assert line.startswith(f"{DUMP_PREFIX}|{i + 1}/{total}|")
            restored.extend(json.loads(line.split("|", 2)[2])["entries"])
        assert restored == entries
        assert "session_id" not in json.loads(lines[1].split("|", 2)[2])

    def test_empty_dump(self):
        lines = chunk_transcript_dump({"session_id": "CA", "phone": "", "final_state": "fresh", "entries": []})
        assert lines == [f'{DUMP_PREFIX}|1/1|{{"session_id": "CA", "phone": "", "final_state": "fresh", "entries": []}}']
