# /mnt/data/midi_util.py
"""Pitch and tempo conversions used by the track builders.

Note names follow the ``c4 == 60`` convention: a letter, an optional run of
sharps (``#``) or flats (``b``), then an octave number.
"""

from __future__ import annotations

import re
from typing import Dict, List, Sequence, Union

from midi_codec import MIDIValidationError, be_bytes_to_int

__all__ = [
    "DEFAULT_VOLUME",
    "DEFAULT_DURATION",
    "DEFAULT_CHANNEL",
    "MIDI_LETTER_PITCHES",
    "MIDI_PITCHES_LETTER",
    "MIDI_FLATTENED_NOTES",
    "PitchInput",
    "midi_pitch_from_note",
    "ensure_midi_pitch",
    "note_from_midi_pitch",
    "mpqn_from_bpm",
    "bpm_from_mpqn",
]

DEFAULT_VOLUME = 90
DEFAULT_DURATION = 128
DEFAULT_CHANNEL = 0

PitchInput = Union[int, str]

MIDI_LETTER_PITCHES: Dict[str, int] = {
    "a": 21,
    "b": 23,
    "c": 12,
    "d": 14,
    "e": 16,
    "f": 17,
    "g": 19,
}

MIDI_PITCHES_LETTER: Dict[int, str] = {
    12: "c",
    13: "c#",
    14: "d",
    15: "d#",
    16: "e",
    17: "f",
    18: "f#",
    19: "g",
    20: "g#",
    21: "a",
    22: "a#",
    23: "b",
}

MIDI_FLATTENED_NOTES: Dict[str, str] = {
    "a#": "bb",
    "c#": "db",
    "d#": "eb",
    "f#": "gb",
    "g#": "ab",
}

_NOTE_RE = re.compile(r"([a-g])(#+|b+)?([0-9]+)", re.IGNORECASE)

_MICROSECONDS_PER_MINUTE = 60_000_000


def midi_pitch_from_note(name: str) -> int:
    """Convert a note name such as ``"c#3"`` to its MIDI pitch (49)."""

    match = _NOTE_RE.fullmatch(str(name).strip())
    if match is None:
        raise MIDIValidationError(f"Invalid note name: {name!r}")
    letter = match.group(1).lower()
    accidental = match.group(2) or ""
    octave = int(match.group(3))
    shift = len(accidental) if accidental.startswith("#") else -len(accidental)
    return 12 * octave + MIDI_LETTER_PITCHES[letter] + shift


def ensure_midi_pitch(pitch: PitchInput) -> int:
    """Accept an int, a digit-only string or a note name and return a pitch."""

    if isinstance(pitch, bool):
        raise MIDIValidationError(f"Invalid pitch: {pitch!r}")
    if isinstance(pitch, int):
        return pitch
    text = str(pitch).strip()
    if text.isdigit():
        return int(text)
    return midi_pitch_from_note(text)


def note_from_midi_pitch(pitch: int, return_flattened: bool = False) -> str:
    """Inverse of :func:`midi_pitch_from_note`; sharps unless asked otherwise."""

    octave = 0
    note_num = int(pitch)
    if note_num > 23:
        octave = note_num // 12 - 1
        note_num -= octave * 12

    name = MIDI_PITCHES_LETTER.get(note_num)
    if name is None:
        raise MIDIValidationError(f"Invalid MIDI pitch: {pitch}")
    if return_flattened and "#" in name:
        name = MIDI_FLATTENED_NOTES[name]
    return f"{name}{octave}"


def mpqn_from_bpm(bpm: float) -> List[int]:
    """Return the tempo as a 3-byte big-endian microseconds-per-quarter list."""

    if bpm is None or float(bpm) <= 0:
        raise MIDIValidationError("Tempo must be > 0 BPM")
    mpqn = int(_MICROSECONDS_PER_MINUTE // float(bpm))
    mpqn = max(1, min(mpqn, 0xFFFFFF))
    return [(mpqn >> 16) & 0xFF, (mpqn >> 8) & 0xFF, mpqn & 0xFF]


def bpm_from_mpqn(mpqn: Union[int, Sequence[int]]) -> int:
    if isinstance(mpqn, int):
        value = mpqn
    else:
        value = be_bytes_to_int(mpqn)
    if value <= 0:
        raise MIDIValidationError("MPQN must be positive")
    return _MICROSECONDS_PER_MINUTE // value
