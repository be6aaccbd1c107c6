# /mnt/data/midi_writer.py
"""Standard MIDI File writer.

The writer is split in two assemblers:

* :class:`MIDITrack` keeps an ordered list of events (insertion order is
  playback order) and frames them as an ``MTrk`` chunk with a computed
  length and the end-of-track marker;
* :class:`MIDIFile` owns the tracks and the ticks-per-quarter resolution
  and emits the ``MThd`` header followed by every track chunk.

Tracks also carry builder helpers (notes, chords, program changes, tempo,
meter, key) that return the track so calls can be chained::

    midi = MIDIFile(ticks=128)
    midi.add_track().set_tempo(120).add_note(0, "c4", 128).add_note(0, "e4", 128)
    data = midi.to_bytes()

Serialisation never mutates the model, so ``to_bytes`` can be called any
number of times and always returns the same bytes for the same state.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, overload
import logging
import math
import numbers
import os

from midi_codec import (
    MIDISerializationError,
    MIDIValidationError,
    int_to_be_bytes,
)
from midi_events import Event, MetaEvent, MIDIEvent, event_to_bytes
from midi_util import DEFAULT_VOLUME, PitchInput, ensure_midi_pitch, mpqn_from_bpm

__all__ = [
    "MIDITrack",
    "MIDIFile",
    "MIDIBlob",
    "MIME_MIDI",
    "MIME_GENERIC",
]

logger = logging.getLogger(__name__)

MIME_MIDI = "audio/x-midi"
MIME_GENERIC = "application/octet-stream"


class MIDITrack:
    """Ordered event list framed as an ``MTrk`` chunk."""

    START_BYTES = b"MTrk"
    END_BYTES = b"\x00\xFF\x2F\x00"

    def __init__(self, events: Optional[Iterable[Event]] = None) -> None:
        self.events: List[Event] = list(events) if events is not None else []

    # ------------------------------------------------------------------
    # Raw event management
    def add_event(self, event: Event) -> "MIDITrack":
        if not isinstance(event, (MIDIEvent, MetaEvent)):
            raise MIDIValidationError(
                f"Tracks only hold MIDIEvent or MetaEvent, got {type(event).__name__}"
            )
        self.events.append(event)
        return self

    # ------------------------------------------------------------------
    # Note helpers
    def add_note_on(
        self,
        channel: int,
        pitch: PitchInput,
        time: Optional[int] = None,
        velocity: Optional[int] = None,
    ) -> "MIDITrack":
        self.events.append(
            MIDIEvent(
                type=MIDIEvent.NOTE_ON,
                channel=channel,
                param1=ensure_midi_pitch(pitch),
                param2=DEFAULT_VOLUME if velocity is None else velocity,
                time=time or 0,
            )
        )
        return self

    def add_note_off(
        self,
        channel: int,
        pitch: PitchInput,
        time: Optional[int] = None,
        velocity: Optional[int] = None,
    ) -> "MIDITrack":
        self.events.append(
            MIDIEvent(
                type=MIDIEvent.NOTE_OFF,
                channel=channel,
                param1=ensure_midi_pitch(pitch),
                param2=DEFAULT_VOLUME if velocity is None else velocity,
                time=time or 0,
            )
        )
        return self

    def add_note(
        self,
        channel: int,
        pitch: PitchInput,
        dur: Optional[int] = None,
        time: Optional[int] = None,
        velocity: Optional[int] = None,
    ) -> "MIDITrack":
        """Note-on after ``time`` ticks, plus a note-off ``dur`` ticks later.

        Without a positive duration only the note-on is written and the
        caller is expected to close the note.
        """

        pitch_num = ensure_midi_pitch(pitch)
        on = MIDIEvent(
            type=MIDIEvent.NOTE_ON,
            channel=channel,
            param1=pitch_num,
            param2=DEFAULT_VOLUME if velocity is None else velocity,
            time=time or 0,
        )
        pending = [on]
        if dur:
            pending.append(
                MIDIEvent(
                    type=MIDIEvent.NOTE_OFF,
                    channel=channel,
                    param1=pitch_num,
                    param2=DEFAULT_VOLUME if velocity is None else velocity,
                    time=dur,
                )
            )
        self.events.extend(pending)
        return self

    def add_chord(
        self,
        channel: int,
        chord: Sequence[PitchInput],
        dur: Optional[int] = None,
        velocity: Optional[int] = None,
    ) -> "MIDITrack":
        """All note-ons at once, then the note-offs; only the first off waits ``dur``."""

        if isinstance(chord, (str, bytes)) or not isinstance(chord, Sequence) or not chord:
            raise MIDIValidationError("Chord must be a non-empty list of pitches")
        pitches = [ensure_midi_pitch(p) for p in chord]
        vel = DEFAULT_VOLUME if velocity is None else velocity
        pending: List[Event] = [
            MIDIEvent(type=MIDIEvent.NOTE_ON, channel=channel, param1=p, param2=vel, time=0)
            for p in pitches
        ]
        for index, p in enumerate(pitches):
            pending.append(
                MIDIEvent(
                    type=MIDIEvent.NOTE_OFF,
                    channel=channel,
                    param1=p,
                    param2=DEFAULT_VOLUME,
                    time=(dur or 0) if index == 0 else 0,
                )
            )
        self.events.extend(pending)
        return self

    # ------------------------------------------------------------------
    # Channel helpers
    def set_instrument(self, channel: int, instrument: int, time: Optional[int] = None) -> "MIDITrack":
        self.events.append(
            MIDIEvent(
                type=MIDIEvent.PROGRAM_CHANGE,
                channel=channel,
                param1=instrument,
                time=time or 0,
            )
        )
        return self

    def add_controller(
        self,
        channel: int,
        controller: int,
        value: int,
        time: Optional[int] = None,
    ) -> "MIDITrack":
        self.events.append(
            MIDIEvent(
                type=MIDIEvent.CONTROLLER,
                channel=channel,
                param1=controller,
                param2=value,
                time=time or 0,
            )
        )
        return self

    # ------------------------------------------------------------------
    # Meta helpers
    def set_name(self, name: str, time: Optional[int] = None) -> "MIDITrack":
        self.events.append(MetaEvent(type=MetaEvent.TRACK_NAME, data=name or "Track", time=time or 0))
        return self

    def set_tempo(self, bpm: float, time: Optional[int] = None) -> "MIDITrack":
        self.events.append(MetaEvent(type=MetaEvent.TEMPO, data=mpqn_from_bpm(bpm), time=time or 0))
        return self

    def set_time_signature(
        self,
        numerator: int,
        denominator: int,
        time: Optional[int] = None,
    ) -> "MIDITrack":
        if denominator is None or denominator <= 0:
            raise MIDIValidationError("Time signature denominator must be an exact power of 2!")
        dd_log2 = math.log2(denominator)
        if dd_log2 != math.floor(dd_log2):
            raise MIDIValidationError("Time signature denominator must be an exact power of 2!")
        cc = 0x18  # MIDI clocks per metronome click
        bb = 0x08  # 32nd notes per MIDI quarter
        self.events.append(
            MetaEvent(
                type=MetaEvent.TIME_SIG,
                data=[int(numerator) & 0xFF, int(dd_log2) & 0xFF, cc, bb],
                time=time or 0,
            )
        )
        return self

    def set_key_signature(
        self,
        accidentals: int,
        minor: bool = False,
        time: Optional[int] = None,
    ) -> "MIDITrack":
        """``accidentals`` counts sharps (positive) or flats (negative)."""

        self.events.append(
            MetaEvent(
                type=MetaEvent.KEY_SIG,
                data=[int(accidentals) & 0xFF, 1 if minor else 0],
                time=time or 0,
            )
        )
        return self

    # Fluent aliases
    note_on = add_note_on
    note_off = add_note_off
    note = add_note
    chord = add_chord
    instrument = set_instrument
    tempo = set_tempo
    time_signature = set_time_signature
    key_signature = set_key_signature

    # ------------------------------------------------------------------
    def to_bytes(self) -> bytes:
        body = bytearray()
        for event in self.events:
            body += event_to_bytes(event)
        body += self.END_BYTES
        track_length = len(body)
        logger.debug("track: %d event(s), %d byte(s)", len(self.events), track_length)
        return self.START_BYTES + int_to_be_bytes(track_length, 4) + bytes(body)


@dataclass(frozen=True)
class MIDIBlob:
    """Serialised file wrapped with a MIME type for output packaging."""

    data: bytes
    mime_type: str = MIME_MIDI

    @property
    def size(self) -> int:
        return len(self.data)


class MIDIFile:
    """Header chunk plus the owned tracks."""

    HDR_CHUNKID = b"MThd"
    HDR_CHUNK_SIZE = b"\x00\x00\x00\x06"
    HDR_TYPE0 = b"\x00\x00"
    HDR_TYPE1 = b"\x00\x01"
    DEFAULT_TICKS = 128

    def __init__(self, ticks: Optional[int] = None) -> None:
        if ticks is not None:
            if isinstance(ticks, bool) or not isinstance(ticks, numbers.Real):
                raise MIDIValidationError("Ticks per beat must be a number!")
            if ticks <= 0 or ticks >= 1 << 15 or ticks % 1 != 0:
                raise MIDIValidationError("Ticks per beat must be an integer between 1 and 32767!")
        self.ticks = int(ticks) if ticks is not None else self.DEFAULT_TICKS
        self.tracks: List[MIDITrack] = []

    @overload
    def add_track(self) -> MIDITrack: ...

    @overload
    def add_track(self, track: MIDITrack) -> "MIDIFile": ...

    def add_track(self, track: Optional[MIDITrack] = None):
        """Append ``track`` and return the file, or create, append and return a new track."""

        if track is not None:
            if not isinstance(track, MIDITrack):
                raise MIDIValidationError(f"Expected a MIDITrack, got {type(track).__name__}")
            self.tracks.append(track)
            return self
        new_track = MIDITrack()
        self.tracks.append(new_track)
        return new_track

    @property
    def format_type(self) -> int:
        return 1 if len(self.tracks) > 1 else 0

    def header_bytes(self) -> bytes:
        track_count = len(self.tracks)
        if track_count > 0xFFFF:
            raise MIDISerializationError(f"Too many tracks for an SMF header: {track_count}")
        return (
            self.HDR_CHUNKID
            + self.HDR_CHUNK_SIZE
            + (self.HDR_TYPE1 if self.format_type == 1 else self.HDR_TYPE0)
            + int_to_be_bytes(track_count, 2)
            + int_to_be_bytes(self.ticks, 2)
        )

    def to_bytes(self) -> bytes:
        chunks = [self.header_bytes()] + [tr.to_bytes() for tr in self.tracks]
        data = b"".join(chunks)
        logger.debug(
            "file: format %d, %d track(s), %d byte(s)",
            self.format_type,
            len(self.tracks),
            len(data),
        )
        return data

    def to_bytearray(self) -> bytearray:
        return bytearray(self.to_bytes())

    def to_blob(self, generic_type: bool = False) -> MIDIBlob:
        return MIDIBlob(self.to_bytes(), MIME_GENERIC if generic_type else MIME_MIDI)

    def save(self, filename: str) -> int:
        data = self.to_bytes()
        parent = os.path.dirname(os.path.abspath(filename))
        os.makedirs(parent, exist_ok=True)
        with open(filename, "wb") as fh:
            fh.write(data)
        logger.debug("wrote %d byte(s) to %s", len(data), filename)
        return len(data)
