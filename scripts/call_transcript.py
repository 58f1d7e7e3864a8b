#!/usr/bin/env python3
"""Reassemble the timestamped transcript of a finished call from server logs.

Usage:
    python scripts/call_transcript.py server.log                 # last call, human-readable
    uvicorn ... 2>&1 | python scripts/call_transcript.py         # read stdin
    python scripts/call_transcript.py server.log --raw           # last call, raw JSON
    python scripts/call_transcript.py server.log --session CA... # specific call or chat
    python scripts/call_transcript.py server.log --gap-threshold 3
"""

import argparse
import json
import sys

MARKER = "TRANSCRIPT_DUMP|"


def parse_transcript_lines(lines: list[str], session_id: str | None = None) -> list[dict]:
    """Collect TRANSCRIPT_DUMP chunks into complete transcripts, oldest first.

    A chunk numbered 1 starts a new transcript. With `session_id`, only
    that conversation is returned.
    """
    groups: list[dict[int, str]] = []

    for line in lines:
        if MARKER not in line:
            continue
        parts = line[line.index(MARKER):].split("|", 2)
        if len(parts) < 3:
            continue
        try:
            chunk_num = int(parts[1].split("/")[0])
        except ValueError:
            continue

        if chunk_num == 1 or not groups:
            groups.append({})
        groups[-1][chunk_num] = parts[2].rstrip("\n")

    transcripts = []
    for chunks in groups:
        try:
            first = json.loads(chunks.get(1, "{}"))
        except json.JSONDecodeError:
            continue
        if session_id and first.get("session_id") != session_id:
            continue

        entries = list(first.get("entries", []))
        for num in sorted(k for k in chunks if k != 1):
            try:
                entries.extend(json.loads(chunks[num]).get("entries", []))
            except json.JSONDecodeError:
                continue
        first["entries"] = entries
        transcripts.append(first)

    return transcripts


def format_transcript(transcript: dict, gap_threshold: float = 2.0) -> str:
    """Human-readable transcript with slow-gap annotations."""
    sid = transcript.get("session_id", "unknown")
    phone = transcript.get("phone") or "-"
    duration = transcript.get("duration_s", 0)
    final_state = transcript.get("final_state", "unknown")
    lines = [f"Session {sid} | {phone} | {duration}s | {final_state}", "═" * 55, ""]

    entries = transcript.get("entries", [])
    prev_t = None
    for entry in entries:
        t = entry.get("t", 0.0)
        if prev_t is not None and t - prev_t >= gap_threshold:
            gap = t - prev_t
            lines.append(f"      ┆ +{gap:.1f}s" + (" ⚠ SLOW" if gap >= 5.0 else ""))

        state_tag = f"[{entry['state']}]" if entry.get("state") else ""
        speaker = "Praxis" if entry.get("role") == "assistant" else "Anrufer"
        lines.append(f"{t:5.1f}s {state_tag:<18} {speaker}: {entry.get('content', '')}")
        prev_t = t

    if transcript.get("lead_id"):
        lines.append(f"{'':25} ✔ Lead {transcript['lead_id']}")
    if entries:
        lines.append(f"{duration:5.1f}s {'':18} ☎ Call ended")
    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Show the transcript of the last call from server logs")
    parser.add_argument("logfile", nargs="?", default="-", help="Log file to read (default: stdin)")
    parser.add_argument("--raw", action="store_true", help="Output raw JSON")
    parser.add_argument("--session", type=str, default=None, help="Filter by call SID or chat session id")
    parser.add_argument("--gap-threshold", type=float, default=2.0, help="Gap threshold in seconds (default: 2.0)")
    args = parser.parse_args()

    if args.logfile == "-":
        lines = sys.stdin.readlines()
    else:
        try:
            with open(args.logfile, encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            print(f"Error: cannot read {args.logfile}: {e}", file=sys.stderr)
            sys.exit(1)

    transcripts = parse_transcript_lines(lines, session_id=args.session)
    if not transcripts:
        print("No transcript found in the log output.", file=sys.stderr)
        sys.exit(1)

    transcript = transcripts[-1]
    if args.raw:
        print(json.dumps(transcript, indent=2, ensure_ascii=False))
    else:
        print(format_transcript(transcript, gap_threshold=args.gap_threshold))


if __name__ == "__main__":
    main()
