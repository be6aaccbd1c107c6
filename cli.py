# /mnt/data/cli.py
import argparse
import hashlib
import json
import struct
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from render import load_config_safe, load_document, run_session


def run_selftest(cfg: dict) -> None:
    """Run the byte-layout self-test battery and raise if any check fails."""

    start_time = time.perf_counter()

    def run_check(name: str, func: Callable[[], str]) -> None:
        try:
            message = func()
        except Exception as exc:  # pragma: no cover - reported then re-raised
            print(f"[Σ][FAIL] {name} — {exc}")
            raise
        else:
            print(f"[Σ][PASS] {name} — {message}")

    def _check_vlq() -> str:
        from midi_codec import decode_vlq, encode_vlq

        vectors = {
            0: b"\x00",
            0x40: b"\x40",
            0x7F: b"\x7F",
            0x80: b"\x81\x00",
            0x2000: b"\xC0\x00",
            0x3FFF: b"\xFF\x7F",
            0x4000: b"\x81\x80\x00",
            0x0FFFFFFF: b"\xFF\xFF\xFF\x7F",
        }
        for value, expected in vectors.items():
            encoded = encode_vlq(value)
            if encoded != expected:
                raise RuntimeError(f"VLQ {value}: {encoded.hex()} != {expected.hex()}")
            if decode_vlq(encoded) != value:
                raise RuntimeError(f"VLQ round-trip failed for {value}")
        return f"{len(vectors)} VLQ vectors"

    def _check_events() -> str:
        from midi_events import MetaEvent, MIDIEvent

        note = MIDIEvent(type=MIDIEvent.NOTE_ON, channel=9, param1=36, param2=100, time=0)
        if note.to_bytes() != bytes([0x00, 0x99, 36, 100]):
            raise RuntimeError(f"note-on {note.to_bytes().hex()}")
        prog = MIDIEvent(type=MIDIEvent.PROGRAM_CHANGE, channel=0, param1=19)
        if prog.to_bytes() != bytes([0x00, 0xC0, 19]):
            raise RuntimeError(f"program change {prog.to_bytes().hex()}")
        tempo = MetaEvent(type=MetaEvent.TEMPO, data=[7, 161, 32])
        if tempo.to_bytes() != bytes([0x00, 0xFF, 0x51, 3, 7, 161, 32]):
            raise RuntimeError(f"tempo {tempo.to_bytes().hex()}")
        eot = MetaEvent(type=MetaEvent.END_OF_TRACK)
        if eot.to_bytes() != bytes([0x00, 0xFF, 0x2F, 0]):
            raise RuntimeError(f"end of track {eot.to_bytes().hex()}")
        return "note-on, program change, tempo, end-of-track"

    def _check_chunks() -> str:
        from midi_writer import MIDIFile, MIDITrack

        empty = MIDITrack().to_bytes()
        if empty[:4] != b"MTrk" or struct.unpack(">I", empty[4:8])[0] != 4:
            raise RuntimeError(f"empty track {empty.hex()}")
        for count, fmt in ((1, 0), (2, 1), (3, 1)):
            midi = MIDIFile(ticks=480)
            for _ in range(count):
                midi.add_track().add_note(0, "c4", 128)
            data = midi.to_bytes()
            chunk_id, size, file_fmt, ntracks, ticks = struct.unpack(">4sIHHH", data[:14])
            if (chunk_id, size, file_fmt, ntracks, ticks) != (b"MThd", 6, fmt, count, 480):
                raise RuntimeError(f"header {data[:14].hex()} for {count} track(s)")
            if data != midi.to_bytes():
                raise RuntimeError("to_bytes is not idempotent")
        return "MThd/MTrk framing, format 0/1, idempotence"

    def _check_session() -> str:
        plan = {
            "title": "selftest",
            "bpm": 120,
            "tracks": [
                {"name": "lead", "channel": 0, "program": 0, "steps": [
                    {"beat": 0, "note": "c4"},
                    {"beat": 1, "notes": ["e4", "g4"], "locks": {"volume": 0.8}},
                ]},
                {"name": "drums", "channel": 9, "steps": [{"beat": 0, "note": 36, "length": 0.25}]},
            ],
        }
        digests = []
        for _ in range(2):
            with tempfile.TemporaryDirectory() as tmpdir:
                cfg_copy = {k: v for k, v in cfg.items() if not k.startswith("_")}
                cfg_copy["paths"] = {"base": tmpdir, "output": "./output", "midi_export": "./midi"}
                cfg_path = Path(tmpdir) / "config.json"
                cfg_path.write_text(json.dumps(cfg_copy), encoding="utf-8")
                report = run_session(plan, config_path=str(cfg_path))
                data = Path(report["paths"]["midi"]).read_bytes()
                if hashlib.sha256(data).hexdigest() != report["sha256"]:
                    raise RuntimeError("report hash does not match the file on disk")
                digests.append(report["sha256"])
        if digests[0] != digests[1]:
            raise RuntimeError("hashes differ between two identical runs")
        return f"session reproducible — hash {digests[0][:8]}…"

    run_check("VLQ", _check_vlq)
    run_check("Events", _check_events)
    run_check("Chunks", _check_chunks)
    run_check("Session + determinism", _check_session)

    duration = time.perf_counter() - start_time
    print(f"[Σ] self-test finished in {duration:.2f}s.")


def build_plan(args: argparse.Namespace) -> dict:
    plan: dict = {}
    if args.plan:
        loaded = load_document(args.plan)
        if not isinstance(loaded, dict):
            raise TypeError(f"Plan file '{args.plan}' must contain a mapping.")
        plan.update(loaded)
    if args.title:
        plan["title"] = args.title
    if args.bpm is not None:
        plan["bpm"] = args.bpm
    if args.ticks is not None:
        plan["ticks_per_beat"] = args.ticks
    if args.generic_mime:
        plan["generic_mime"] = True
    return plan


def main(argv=None) -> None:
    ap = argparse.ArgumentParser(description="smf-builder — Standard MIDI File rendering")
    ap.add_argument("--plan", help="Song plan (JSON or YAML) to render")
    ap.add_argument("--title", help="Override the plan title")
    ap.add_argument("--bpm", type=float, help="Override the plan tempo")
    ap.add_argument("--ticks", type=int, help="Ticks per quarter note (1..32767)")
    ap.add_argument("--config", default="config.yaml", help="Path to the YAML configuration file")
    ap.add_argument("--generic-mime", action="store_true", help="Tag the output as application/octet-stream")
    ap.add_argument("--selftest", action="store_true", help="Run the byte-layout checks without rendering")
    ap.add_argument("--dry-run", action="store_true", help="Print the resolved plan without rendering")
    args = ap.parse_args(argv)

    cfg = load_config_safe(args.config)

    if args.selftest:
        run_selftest(cfg)
        return

    if not args.plan and not args.title:
        ap.error("--plan (or at least --title) is required to render (use --selftest for checks only)")

    plan = build_plan(args)

    if cfg.get("logging", {}).get("level", "INFO") == "INFO":
        print(
            f"[Σ] rendering title={plan.get('title', 'untitled')} bpm={plan.get('bpm', 'default')} "
            f"tracks={len(plan.get('tracks', []))}"
        )

    if args.dry_run:
        print(json.dumps(plan, indent=2))
        return

    rep = run_session(plan, args.config)
    print(json.dumps(rep, indent=2))


if __name__ == "__main__":
    main()
