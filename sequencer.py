# /mnt/data/sequencer.py
"""Absolute-time patterns scheduled into delta-timed MIDI tracks.

Track builders in :mod:`midi_writer` take delta-times, i.e. the caller has
to know what came before. Song plans are easier to write with absolute
positions in beats, so this module collects steps per pattern, converts
them to ticks and orders them before handing delta-timed events to a
:class:`~midi_writer.MIDITrack`.

Ordering at equal ticks follows fixed priorities: program change first,
then controllers, then note-offs, then note-ons. Releasing before
re-striking keeps repeated notes on the same pitch intact.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np

from midi_cc_db import CCResolver
from midi_events import MIDIEvent
from midi_util import DEFAULT_VOLUME, PitchInput, ensure_midi_pitch
from midi_writer import MIDIFile, MIDITrack

logger = logging.getLogger(__name__)

PRIO_PROGRAM = 5
PRIO_CONTROLLER = 10
PRIO_NOTE_OFF = 20
PRIO_NOTE_ON = 30


@dataclass
class Step:
    beat: float
    note: Optional[PitchInput] = None
    vel: int = DEFAULT_VOLUME
    length_beats: float = 1.0
    locks: Dict[str, float] = field(default_factory=dict)   # 0..1


@dataclass
class Pattern:
    steps: List[Step] = field(default_factory=list)
    channel: int = 0
    device: Optional[str] = None
    program: Optional[int] = None


# (priority, status, param1, param2) for one pending channel message.
_Message = Tuple[int, int, int, Optional[int]]


class Sequencer:
    def __init__(self, ticks_per_beat: int = MIDIFile.DEFAULT_TICKS):
        self.ticks_per_beat = int(ticks_per_beat)
        self.patterns: Dict[str, Pattern] = {}

    def set_pattern(self, track_name: str, pattern: Pattern):
        self.patterns[track_name] = pattern

    def beats_to_ticks(self, beats) -> np.ndarray:
        arr = np.asarray(beats, dtype=np.float64) * float(self.ticks_per_beat)
        return np.rint(arr).astype(np.int64)

    def _collect(
        self,
        track_name: str,
        pat: Pattern,
        cc_resolver: Optional[CCResolver],
        collect_cc: Optional[list],
    ) -> Tuple[List[float], List[_Message]]:
        beats: List[float] = []
        messages: List[_Message] = []

        if pat.program is not None:
            beats.append(0.0)
            messages.append((PRIO_PROGRAM, int(MIDIEvent.PROGRAM_CHANGE), int(pat.program), None))

        for st in pat.steps:
            start = max(0.0, float(st.beat))
            if st.note is not None:
                pitch = ensure_midi_pitch(st.note)
                velocity = int(max(1, min(127, st.vel)))
                beats.append(start)
                messages.append((PRIO_NOTE_ON, int(MIDIEvent.NOTE_ON), pitch, velocity))
                beats.append(start + max(0.0, float(st.length_beats)))
                messages.append((PRIO_NOTE_OFF, int(MIDIEvent.NOTE_OFF), pitch, 0))

            if st.locks:
                resolver = cc_resolver or CCResolver()
                for param, value in st.locks.items():
                    cc, origin = resolver.resolve(param, device=pat.device)
                    beats.append(start)
                    messages.append(
                        (PRIO_CONTROLLER, int(MIDIEvent.CONTROLLER), cc, resolver.scale_0_1_to_0_127(value))
                    )
                    _register_cc(collect_cc, track_name, pat.device, param, cc, origin)
        return beats, messages

    def pattern_to_track(
        self,
        track_name: str,
        pat: Pattern,
        cc_resolver: Optional[CCResolver] = None,
        collect_cc: Optional[list] = None,
        track: Optional[MIDITrack] = None,
    ) -> MIDITrack:
        """Append the pattern's events, delta-timed, to ``track`` (or a new one)."""

        tr = track if track is not None else MIDITrack()
        beats, messages = self._collect(track_name, pat, cc_resolver, collect_cc)
        if not messages:
            return tr

        ticks = self.beats_to_ticks(beats)
        prios = np.array([m[0] for m in messages], dtype=np.int64)

        # A note whose length rounds to zero still needs its off after the on.
        for i in range(1, len(messages)):
            if messages[i][0] == PRIO_NOTE_OFF and messages[i - 1][0] == PRIO_NOTE_ON:
                if ticks[i] <= ticks[i - 1]:
                    ticks[i] = ticks[i - 1] + 1

        order = np.lexsort((prios, ticks))
        ordered_ticks = ticks[order]
        deltas = np.diff(ordered_ticks, prepend=0)

        for idx, delta in zip(order, deltas):
            _prio, status, p1, p2 = messages[int(idx)]
            tr.add_event(
                MIDIEvent(
                    type=status,
                    channel=pat.channel,
                    param1=p1,
                    param2=p2,
                    time=int(delta),
                )
            )
        logger.debug("pattern %s: %d event(s) scheduled", track_name, len(messages))
        return tr

    def to_midi(
        self,
        midi: MIDIFile,
        cc_resolver: Optional[CCResolver] = None,
        collect_cc: Optional[list] = None,
        name_tracks: bool = True,
    ) -> List[MIDITrack]:
        """Add one track per pattern to ``midi`` and return the new tracks."""

        added: List[MIDITrack] = []
        for track_name, pat in self.patterns.items():
            tr = midi.add_track()
            if name_tracks:
                tr.set_name(track_name)
            self.pattern_to_track(track_name, pat, cc_resolver, collect_cc, track=tr)
            added.append(tr)
        return added


def _register_cc(
    collect_cc: Optional[list],
    track: str,
    device: Optional[str],
    param: str,
    cc_number: int,
    origin: str,
) -> None:
    if collect_cc is None:
        return
    device_name = device or "unknown"
    for entry in collect_cc:
        if (
            entry.get("device") == device_name
            and entry.get("param") == param
            and int(entry.get("cc", -1)) == int(cc_number)
            and entry.get("origin") == origin
        ):
            entry["count"] = int(entry.get("count", 0)) + 1
            tracks = entry.setdefault("tracks", {})
            tracks[track] = int(tracks.get(track, 0)) + 1
            return
    collect_cc.append(
        {
            "device": device_name,
            "param": param,
            "cc": int(cc_number),
            "origin": origin,
            "count": 1,
            "tracks": {track: 1},
        }
    )
