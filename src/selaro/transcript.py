import json

DUMP_PREFIX = "TRANSCRIPT_DUMP"


def caller_text(turns: list[dict], latest: str = "") -> str:
    """Caller turns, one per line, with `latest` appended unless it is already the last one.

    Assistant turns are left out: the greeting and the model's own questions
    would otherwise feed the extractor (street numbers, example phrasing).
    """
    lines = [t["content"] for t in turns if t.get("role") == "user" and t.get("content")]
    if latest and (not lines or lines[-1] != latest):
        lines.append(latest)
    return "\n".join(" ".join(line.split()) for line in lines)


def user_text(turns: list[dict]) -> str:
    return " ".join(t["content"] for t in turns if t.get("role") == "user")


def to_llm_messages(system_prompt: str, turns: list[dict]) -> list[dict]:
    """Chat-completion message list: system prompt followed by the turn history."""
    messages = [{"role": "system", "content": system_prompt}]
    for turn in turns:
        if turn.get("role") in ("user", "assistant"):
            messages.append({"role": turn["role"], "content": turn["content"]})
    return messages


def to_timestamped_dump(
    turns: list[dict],
    start_time: float,
    session_id: str,
    phone: str,
    final_state: str,
) -> dict:
    """Build a timestamped transcript dump dict for structured logging.

    Timestamps are relative seconds from call start. If start_time is 0,
    the first turn's timestamp is the base. Turns without a timestamp are
    skipped.
    """
    base_time = start_time
    if base_time <= 0 and turns:
        base_time = next((t["timestamp"] for t in turns if "timestamp" in t), 0)

    entries = [
        {
            "t": round(turn["timestamp"] - base_time, 1),
            "role": turn["role"],
            "state": turn.get("state", ""),
            "content": turn.get("content", ""),
        }
        for turn in turns
        if "timestamp" in turn
    ]

    return {
        "session_id": session_id,
        "phone": phone,
        "final_state": final_state,
        "entries": entries,
    }


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Split a transcript dump into `TRANSCRIPT_DUMP|N/M|{json}` log lines.

    The first chunk carries the header fields plus as many entries as fit;
    later chunks carry entries only.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    entries = dump.get("entries", [])

    batches: list[list[dict]] = []
    batch: list[dict] = []
    size = len(json.dumps({**header, "entries": []}, ensure_ascii=False).encode("utf-8"))

    for entry in entries:
        entry_size = len(json.dumps(entry, ensure_ascii=False).encode("utf-8")) + 2
        if batch and size + entry_size > max_bytes:
            batches.append(batch)
            batch = []
            size = len(json.dumps({"entries": []}).encode("utf-8"))
        batch.append(entry)
        size += entry_size
    batches.append(batch)

    total = len(batches)
    lines = []
    for i, batch in enumerate(batches):
        body = {**header, "entries": batch} if i == 0 else {"entries": batch}
        lines.append(f"{DUMP_PREFIX}|{i + 1}/{total}|{json.dumps(body, ensure_ascii=False)}")
    return lines
