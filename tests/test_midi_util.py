import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from midi_codec import MIDIValidationError
from midi_util import (
    MIDI_LETTER_PITCHES,
    bpm_from_mpqn,
    ensure_midi_pitch,
    midi_pitch_from_note,
    mpqn_from_bpm,
    note_from_midi_pitch,
)


def test_letter_table():
    assert MIDI_LETTER_PITCHES == {"a": 21, "b": 23, "c": 12, "d": 14, "e": 16, "f": 17, "g": 19}


def test_pitch_from_note_names():
    cases = {
        "a1": 33, "b2": 47, "c3": 48, "d4": 62, "e5": 76, "f6": 89, "g7": 103,
        "c#3": 49, "f#6": 90, "g#7": 104,
        "bb1": 34, "eb4": 63,
        "fb4": 64, "e#4": 65,
        "b#2": 48, "cb3": 47,
        "C4": 60, "A4": 69, "c##4": 62, "ebb4": 62,
    }
    for name, expected in cases.items():
        assert midi_pitch_from_note(name) == expected, name


def test_pitch_from_note_rejects_garbage():
    for bad in ("xyz", "", "h4", "c", "4c", "xc4"):
        with pytest.raises(MIDIValidationError):
            midi_pitch_from_note(bad)


def test_ensure_midi_pitch():
    assert ensure_midi_pitch(2) == 2
    assert ensure_midi_pitch(127) == 127
    assert ensure_midi_pitch("c3") == 48
    assert ensure_midi_pitch("60") == 60
    assert ensure_midi_pitch("0") == 0


def test_note_from_midi_pitch():
    assert note_from_midi_pitch(33) == "a1"
    assert note_from_midi_pitch(49) == "c#3"
    assert note_from_midi_pitch(60) == "c4"
    assert note_from_midi_pitch(104) == "g#7"
    assert note_from_midi_pitch(34) == "a#1"
    assert note_from_midi_pitch(34, True) == "bb1"
    assert note_from_midi_pitch(63, return_flattened=True) == "eb4"
    assert note_from_midi_pitch(12) == "c0"
    assert note_from_midi_pitch(21) == "a0"
    with pytest.raises(MIDIValidationError):
        note_from_midi_pitch(5)


def test_names_and_numbers_agree():
    for pitch in range(12, 128):
        assert midi_pitch_from_note(note_from_midi_pitch(pitch)) == pitch
        assert midi_pitch_from_note(note_from_midi_pitch(pitch, True)) == pitch


def test_tempo_conversions():
    assert mpqn_from_bpm(120) == [7, 161, 32]
    b = mpqn_from_bpm(60)
    assert len(b) == 3 and (b[0] << 16 | b[1] << 8 | b[2]) == 1_000_000
    assert len(mpqn_from_bpm(200)) == 3
    assert len(mpqn_from_bpm(1000)) == 3
    assert bpm_from_mpqn(500000) == 120
    assert bpm_from_mpqn(1_000_000) == 60
    assert bpm_from_mpqn([7, 161, 32]) == 120
    assert bpm_from_mpqn(mpqn_from_bpm(140)) == 140
    # Very slow tempos clamp to the 24-bit field.
    assert mpqn_from_bpm(1) == [0xFF, 0xFF, 0xFF]
    with pytest.raises(MIDIValidationError):
        mpqn_from_bpm(0)
    with pytest.raises(MIDIValidationError):
        mpqn_from_bpm(-10)
