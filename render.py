# /mnt/data/render.py
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple
import copy
import ast
import hashlib
import json
import os
import warnings
import logging
import re
from datetime import datetime, timezone

from midi_cc_db import CCResolver, ORIGIN_CONFIGURED, ORIGIN_FALLBACK
from midi_util import ensure_midi_pitch
from midi_writer import MIDIFile, MIDITrack
from sequencer import Sequencer, Pattern, Step

CONFIG_CACHE: Dict[str, Dict[str, Any]] = {}

logger = logging.getLogger(__name__)

_DEFAULT_PROJECT = {
    "name": "smf-builder",
    "version": "1.0",
    "date_utc": "auto",
}

_DEFAULT_MIDI = {
    "ticks_per_beat": 128,
    "tempo_default": 120.0,
    "time_signature": "4/4",
    "default_velocity": 90,
    "default_length_beats": 1.0,
    "generic_mime": False,
    "conductor_track": True,
}

_DEFAULT_PATHS = {
    "base": ".",
    "output": "./output",
    "midi_export": "./midi_export",
}

_DEFAULT_EXPORT = {
    "filenames": {
        "midi": "{project}_{title}_{bpm}bpm.mid",
        "report": "{project}_{title}_report.json",
    },
}

_DEFAULT_LOGGING = {
    "level": "INFO",
    "report_schema_version": "1.0",
}

_DEFAULT_MIDI_CC = {
    "fallback_profile": {},
    "defaults": {},
    "aliases": {},
    "devices": {},
}


def _parse_scalar(value: str) -> Any:
    token = value.strip()
    if not token or token.lower() in {"null", "~"}:
        return None
    lowered = token.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if (token.startswith('"') and token.endswith('"')) or (
        token.startswith("'") and token.endswith("'")
    ):
        return token[1:-1]
    try:
        if any(ch in token for ch in (".", "e", "E")):
            return float(token)
        return int(token)
    except ValueError:
        return token


def _parse_inline_dict(text: str) -> Dict[str, Any]:
    inner = text.strip()[1:-1].strip()
    if not inner:
        return {}
    parts: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in inner:
        if ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        if ch in "[{":
            depth += 1
        elif ch in "]}":
            depth = max(0, depth - 1)
        current.append(ch)
    if current:
        parts.append("".join(current).strip())

    out: Dict[str, Any] = {}
    for part in parts:
        if not part:
            continue
        key, _, raw_val = part.partition(":")
        key = key.strip().strip('"\'')
        out[key] = _parse_value(raw_val.strip())
    return out


def _parse_value(token: str) -> Any:
    if not token:
        return None
    stripped = token.strip()
    if stripped.startswith("{") and stripped.endswith("}"):
        return _parse_inline_dict(stripped)
    if stripped.startswith("[") and stripped.endswith("]"):
        try:
            return ast.literal_eval(stripped)
        except (ValueError, SyntaxError):
            return stripped
    return _parse_scalar(stripped)


def _strip_comment(raw: str) -> str:
    # '#' also spells sharps ("c#4"), so only a '#' that starts the line or
    # follows whitespace opens a comment.
    match = re.search(r"(^|\s)#", raw)
    return raw[: match.start()] if match else raw


def _load_yaml_like(text: str) -> Any:
    stripped = text.strip()
    if not stripped:
        return {}
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass

    lines: List[Tuple[int, str]] = []
    for raw in text.splitlines():
        trimmed = _strip_comment(raw).rstrip()
        if not trimmed.strip():
            continue
        indent = len(trimmed) - len(trimmed.lstrip(" "))
        content = trimmed.strip()
        lines.append((indent, content))

    if not lines:
        return {}

    root: Any = {}
    stack: List[Tuple[int, Any]] = [(-1, root)]

    for idx, (indent, content) in enumerate(lines):
        while len(stack) > 1 and indent < stack[-1][0]:
            stack.pop()
        parent = stack[-1][1]
        next_line = lines[idx + 1] if idx + 1 < len(lines) else None

        if content.startswith("- "):
            if not isinstance(parent, list):
                raise ValueError("unexpected list item outside list context")
            value_part = content[2:].strip()
            key, sep, raw_val = value_part.partition(":")
            if sep and not value_part.startswith(("{", "[", '"', "'")):
                # "- key: value" opens a mapping item continued on the next lines.
                item: Dict[str, Any] = {}
                parent.append(item)
                stack.append((indent + 2, item))
                key = key.strip().strip('"\'')
                if raw_val.strip():
                    item[key] = _parse_value(raw_val.strip())
                else:
                    container = [] if (next_line and next_line[0] > indent + 2 and next_line[1].startswith("- ")) else {}
                    item[key] = container
                    stack.append((indent + 4, container))
            elif not value_part:
                container: Any
                if next_line and next_line[0] > indent and next_line[1].startswith("- "):
                    container = []
                else:
                    container = {}
                parent.append(container)
                stack.append((indent + 2, container))
            else:
                parent.append(_parse_value(value_part))
            continue

        key, sep, raw_val = content.partition(":")
        if not sep:
            raise ValueError(f"invalid YAML line: {content}")
        key = key.strip().strip('"\'')
        value_part = raw_val.strip()
        if not value_part:
            container = [] if (next_line and next_line[0] > indent and next_line[1].startswith("- ")) else {}
            if isinstance(parent, list):
                parent.append({key: container})
            else:
                parent[key] = container
            stack.append((indent + 2, container))
        else:
            value = _parse_value(value_part)
            if isinstance(parent, list):
                parent.append({key: value})
            else:
                parent[key] = value

    return root


def _resolve_path(base_dir: str, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    path = os.path.expanduser(str(value))
    if not os.path.isabs(path):
        path = os.path.abspath(os.path.join(base_dir, path))
    return path


def load_document(path: str) -> Any:
    """Read a JSON or YAML-like document (song plans, configs)."""

    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    _, ext = os.path.splitext(path)
    if ext.lower() == ".json":
        lines = [ln for ln in text.splitlines() if not ln.strip().startswith("//")]
        return json.loads("\n".join(lines) or "{}")
    return _load_yaml_like(text)


def load_config_safe(path: str = "config.yaml", *, use_cache: bool = True) -> Dict[str, Any]:
    """Load the YAML config safely, injecting defaults and caching the result."""

    abs_path = os.path.abspath(path)
    if use_cache and abs_path in CONFIG_CACHE:
        return copy.deepcopy(CONFIG_CACHE[abs_path])

    base_dir = os.path.dirname(abs_path)
    try:
        with open(abs_path, "r", encoding="utf-8") as f:
            cfg_raw = _load_yaml_like(f.read()) or {}
    except FileNotFoundError:
        warnings.warn(f"Config file '{path}' not found. Using defaults.")
        cfg_raw = {}

    if not isinstance(cfg_raw, dict):
        warnings.warn("The configuration must be a mapping. Using defaults.")
        cfg_raw = {}

    cfg: Dict[str, Any] = copy.deepcopy(cfg_raw)

    def _ensure_section(key: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
        section = cfg.get(key)
        if not isinstance(section, dict):
            if key in cfg:
                warnings.warn(f"Section '{key}' is invalid, using defaults.")
            section = copy.deepcopy(defaults)
        else:
            for sub_key, default_value in defaults.items():
                if isinstance(default_value, dict):
                    sub_section = section.get(sub_key)
                    if not isinstance(sub_section, dict):
                        if sub_key in section:
                            warnings.warn(f"Key '{key}.{sub_key}' is invalid, defaults injected.")
                        section[sub_key] = copy.deepcopy(default_value)
                    else:
                        for leaf_key, leaf_default in default_value.items():
                            if leaf_key not in sub_section:
                                sub_section[leaf_key] = copy.deepcopy(leaf_default)
                else:
                    section.setdefault(sub_key, copy.deepcopy(default_value))
        cfg[key] = section
        return section

    _ensure_section("project", _DEFAULT_PROJECT)
    midi_cfg = _ensure_section("midi", _DEFAULT_MIDI)
    paths = _ensure_section("paths", _DEFAULT_PATHS)
    _ensure_section("export", _DEFAULT_EXPORT)
    _ensure_section("logging", _DEFAULT_LOGGING)
    _ensure_section("midi_cc", _DEFAULT_MIDI_CC)

    try:
        MIDIFile(midi_cfg.get("ticks_per_beat"))
    except ValueError as exc:
        warnings.warn(f"midi.ticks_per_beat rejected ({exc}); using {_DEFAULT_MIDI['ticks_per_beat']}.")
        midi_cfg["ticks_per_beat"] = _DEFAULT_MIDI["ticks_per_beat"]

    paths["base"] = _resolve_path(base_dir, paths.get("base", base_dir)) or base_dir
    for key in ("output", "midi_export"):
        paths[key] = _resolve_path(paths["base"], paths.get(key, _DEFAULT_PATHS[key]))

    cc_overrides = cfg["midi_cc"].get("overrides_path")
    if cc_overrides:
        cfg["midi_cc"]["overrides_path"] = _resolve_path(paths["base"], cc_overrides)

    cfg["_base_dir"] = paths["base"]

    CONFIG_CACHE[abs_path] = copy.deepcopy(cfg)
    return copy.deepcopy(cfg)


@dataclass
class TrackPlan:
    name: str
    channel: int = 0
    program: Optional[int] = None
    device: Optional[str] = None
    steps: List[Step] = field(default_factory=list)


@dataclass
class SongPlan:
    title: str
    bpm: float
    ticks_per_beat: int
    time_signature: Tuple[int, int] = (4, 4)
    key_signature: Optional[Tuple[int, bool]] = None
    tracks: List[TrackPlan] = field(default_factory=list)
    generic_mime: bool = False


def _fmt_name(template: str, **kw) -> str:
    return template.format(**kw)


def _ensure_dirs(*paths):
    for p in paths:
        os.makedirs(p, exist_ok=True)


def _sanitize_component(*parts: Any) -> str:
    raw = "_".join(str(p) for p in parts if p is not None)
    raw = raw.strip()
    if not raw:
        return "song"
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "-", raw)
    cleaned = cleaned.strip("-_")
    return cleaned or "song"


def _parse_time_signature(value: Any) -> Tuple[int, int]:
    if isinstance(value, str):
        num, _, den = value.partition("/")
        return int(num), int(den or 4)
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return int(value[0]), int(value[1])
    raise TypeError(f"Unreadable time signature: {value!r}")


def _parse_key_signature(value: Any) -> Optional[Tuple[int, bool]]:
    if value is None:
        return None
    if isinstance(value, dict):
        return int(value.get("accidentals", 0)), bool(value.get("minor", False))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return int(value[0]), bool(value[1])
    if isinstance(value, int):
        return int(value), False
    raise TypeError(f"Unreadable key signature: {value!r}")


def _parse_steps(raw_steps: Any, midi_cfg: Dict[str, Any]) -> List[Step]:
    if raw_steps is None:
        return []
    if not isinstance(raw_steps, list):
        raise TypeError("Track 'steps' must be a list.")
    default_vel = int(midi_cfg.get("default_velocity", 90))
    default_len = float(midi_cfg.get("default_length_beats", 1.0))
    steps: List[Step] = []
    for raw in raw_steps:
        if not isinstance(raw, dict):
            raise TypeError(f"Each step must be a mapping, got {raw!r}")
        if "beat" not in raw:
            raise KeyError("Each step must give a 'beat'.")
        beat = float(raw["beat"])
        vel = int(raw.get("vel", raw.get("velocity", default_vel)))
        length = float(raw.get("length", raw.get("length_beats", default_len)))
        locks = dict(raw.get("locks") or raw.get("cc") or {})
        notes = raw.get("notes")
        if notes is None:
            notes = [raw["note"]] if raw.get("note") is not None else []
        if not notes:
            steps.append(Step(beat=beat, note=None, vel=vel, length_beats=length, locks=locks))
            continue
        for i, note in enumerate(notes):
            steps.append(
                Step(
                    beat=beat,
                    note=ensure_midi_pitch(note),
                    vel=vel,
                    length_beats=length,
                    locks=locks if i == 0 else {},
                )
            )
    return steps


def build_song_plan(plan: Dict[str, Any], cfg: Dict[str, Any]) -> SongPlan:
    if not isinstance(plan, dict):
        raise TypeError("The song plan must be a mapping or a SongPlan.")
    midi_cfg = cfg["midi"]
    raw_tracks = plan.get("tracks", [])
    if not isinstance(raw_tracks, list):
        raise TypeError("Plan 'tracks' must be a list.")
    tracks: List[TrackPlan] = []
    for idx, raw in enumerate(raw_tracks):
        if not isinstance(raw, dict):
            raise TypeError(f"Track #{idx} must be a mapping.")
        tracks.append(
            TrackPlan(
                name=str(raw.get("name") or f"Track {idx + 1}"),
                channel=int(raw.get("channel", 0)),
                program=None if raw.get("program") is None else int(raw["program"]),
                device=raw.get("device"),
                steps=_parse_steps(raw.get("steps"), midi_cfg),
            )
        )
    return SongPlan(
        title=str(plan.get("title") or "untitled"),
        bpm=float(plan.get("bpm", midi_cfg.get("tempo_default", 120.0))),
        ticks_per_beat=int(plan.get("ticks_per_beat", midi_cfg.get("ticks_per_beat", 128))),
        time_signature=_parse_time_signature(plan.get("time_signature", midi_cfg.get("time_signature", "4/4"))),
        key_signature=_parse_key_signature(plan.get("key_signature")),
        tracks=tracks,
        generic_mime=bool(plan.get("generic_mime", midi_cfg.get("generic_mime", False))),
    )


def _write_conductor(track: MIDITrack, plan: SongPlan) -> None:
    num, den = plan.time_signature
    track.set_tempo(plan.bpm)
    track.set_time_signature(num, den)
    if plan.key_signature is not None:
        accidentals, minor = plan.key_signature
        track.set_key_signature(accidentals, minor)


def build_midi(plan: SongPlan, cfg: Dict[str, Any]) -> Tuple[MIDIFile, List[Dict[str, Any]]]:
    """Turn a song plan into a :class:`MIDIFile`; also returns CC usage."""

    midi = MIDIFile(plan.ticks_per_beat)
    resolver = CCResolver.from_config(cfg)
    seq = Sequencer(ticks_per_beat=midi.ticks)

    cc_used: List[Dict[str, Any]] = []
    use_conductor = bool(cfg["midi"].get("conductor_track", True)) and len(plan.tracks) > 1
    if use_conductor or not plan.tracks:
        conductor = midi.add_track()
        conductor.set_name(plan.title)
        _write_conductor(conductor, plan)

    # Plan order, not names: two tracks may share a name.
    for idx, tp in enumerate(plan.tracks):
        tr = midi.add_track()
        tr.set_name(tp.name)
        if idx == 0 and not use_conductor:
            # Single-track (or no conductor) files carry the metadata on the first track.
            _write_conductor(tr, plan)
        pattern = Pattern(steps=list(tp.steps), channel=tp.channel, device=tp.device, program=tp.program)
        seq.pattern_to_track(tp.name, pattern, resolver, cc_used, track=tr)
    return midi, cc_used


def run_session(plan: Dict[str, Any] | SongPlan, config_path: str = "config.yaml") -> Dict[str, Any]:
    cfg = load_config_safe(config_path)
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        level_name = str(cfg.get("logging", {}).get("level", "INFO")).upper()
        level = getattr(logging, level_name, logging.INFO)
        logging.basicConfig(level=level)

    if isinstance(plan, SongPlan):
        song = plan
    elif isinstance(plan, dict):
        song = build_song_plan(plan, cfg)
    else:
        raise TypeError("The song plan must be a mapping or a SongPlan.")

    paths_cfg = cfg["paths"]
    output_dir = paths_cfg["output"]
    midi_dir = paths_cfg["midi_export"]

    project_name = cfg.get("project", {}).get("name", "smf-builder")
    session_dir = os.path.join(output_dir, _sanitize_component(project_name, song.title))
    _ensure_dirs(session_dir, midi_dir)

    filename_ctx = {
        "project": _sanitize_component(project_name),
        "title": _sanitize_component(song.title),
        "bpm": int(round(song.bpm)),
    }

    midi, cc_used = build_midi(song, cfg)
    blob = midi.to_blob(generic_type=song.generic_mime)

    midi_name = _fmt_name(cfg["export"]["filenames"]["midi"], **filename_ctx)
    midi_path = os.path.join(midi_dir, midi_name)
    with open(midi_path, "wb") as fh:
        fh.write(blob.data)
    logger.info("[Σ] MIDI written: %s (%d bytes, %d track(s))", midi_path, blob.size, len(midi.tracks))

    cc_origin_stats: Dict[str, int] = {ORIGIN_CONFIGURED: 0, ORIGIN_FALLBACK: 0}
    for entry in cc_used:
        origin = entry.get("origin", ORIGIN_FALLBACK)
        cc_origin_stats[origin] = cc_origin_stats.get(origin, 0) + int(entry.get("count", 1))
    if cc_origin_stats[ORIGIN_FALLBACK]:
        logger.warning(
            "[Σ] CC fallback mapping used %d time(s); consider configuring midi_cc.",
            cc_origin_stats[ORIGIN_FALLBACK],
        )

    report_name = _fmt_name(cfg["export"]["filenames"]["report"], **filename_ctx)
    report_path = os.path.join(session_dir, report_name)

    project_cfg = cfg.get("project", {})
    raw_date = project_cfg.get("date_utc", "auto")
    if isinstance(raw_date, str) and raw_date.lower() == "auto":
        date_utc = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
    else:
        date_utc = raw_date

    report = {
        "project": project_name,
        "version": str(project_cfg.get("version", "1.0")),
        "date_utc": date_utc,
        "title": song.title,
        "bpm": song.bpm,
        "time_signature": list(song.time_signature),
        "key_signature": list(song.key_signature) if song.key_signature is not None else None,
        "ticks_per_beat": midi.ticks,
        "format": midi.format_type,
        "track_count": len(midi.tracks),
        "event_counts": [len(tr.events) for tr in midi.tracks],
        "size_bytes": blob.size,
        "sha256": hashlib.sha256(blob.data).hexdigest(),
        "mime_type": blob.mime_type,
        "cc_used": cc_used,
        "cc_origin_stats": cc_origin_stats,
        "paths": {
            "midi": midi_path,
            "report": report_path,
            "session_dir": session_dir,
        },
        "schema_version": cfg.get("logging", {}).get("report_schema_version", "1.0"),
    }

    with open(report_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2)

    return report
