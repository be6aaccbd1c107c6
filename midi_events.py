# /mnt/data/midi_events.py
"""Event model for the MIDI writer.

Two shapes of event live in a track:

* :class:`MIDIEvent` -- channel voice messages (note on/off, controllers,
  program changes, aftertouch, pitch bend);
* :class:`MetaEvent` -- file-only metadata (tempo, meters, keys, text).

Both keep their delta-time already encoded as a VLQ and expose
``to_bytes()``. :func:`event_to_bytes` is the single dispatch point used by
the track assembler.
"""

from __future__ import annotations

from enum import IntEnum
import numbers
from typing import Optional, Sequence, Union

from midi_codec import (
    MIDISerializationError,
    MIDIValidationError,
    as_integral,
    bytes_from_codes,
    decode_vlq,
    encode_vlq,
)

__all__ = [
    "MidiEventType",
    "MetaEventType",
    "MIDIEvent",
    "MetaEvent",
    "Event",
    "MetaData",
    "event_to_bytes",
]


class MidiEventType(IntEnum):
    NOTE_OFF = 0x80
    NOTE_ON = 0x90
    AFTER_TOUCH = 0xA0
    CONTROLLER = 0xB0
    PROGRAM_CHANGE = 0xC0
    CHANNEL_AFTERTOUCH = 0xD0
    PITCH_BEND = 0xE0


class MetaEventType(IntEnum):
    SEQUENCE = 0x00
    TEXT = 0x01
    COPYRIGHT = 0x02
    TRACK_NAME = 0x03
    INSTRUMENT = 0x04
    LYRIC = 0x05
    MARKER = 0x06
    CUE_POINT = 0x07
    CHANNEL_PREFIX = 0x20
    END_OF_TRACK = 0x2F
    TEMPO = 0x51
    SMPTE = 0x54
    TIME_SIG = 0x58
    KEY_SIG = 0x59
    SEQ_EVENT = 0x7F


_VALID_EVENT_TYPES = frozenset(int(t) for t in MidiEventType)

MetaData = Union[Sequence[int], int, float, str, None]


def _check_data_byte(name: str, value: int) -> int:
    value = as_integral(value, name)
    # Data bytes never carry the status bit.
    if value < 0 or value > 0x7F:
        raise MIDIValidationError(f"{name} {value} out of range 0..127")
    return value


class MIDIEvent:
    """Channel voice event: ``[delta VLQ] status param1 [param2]``."""

    NOTE_OFF = MidiEventType.NOTE_OFF
    NOTE_ON = MidiEventType.NOTE_ON
    AFTER_TOUCH = MidiEventType.AFTER_TOUCH
    CONTROLLER = MidiEventType.CONTROLLER
    PROGRAM_CHANGE = MidiEventType.PROGRAM_CHANGE
    CHANNEL_AFTERTOUCH = MidiEventType.CHANNEL_AFTERTOUCH
    PITCH_BEND = MidiEventType.PITCH_BEND

    def __init__(
        self,
        type: int,
        channel: int,
        param1: int,
        param2: Optional[int] = None,
        time: Optional[int] = None,
    ) -> None:
        self.time = encode_vlq(0)
        self.param2: Optional[int] = None
        self.set_time(time)
        self.set_type(type)
        self.set_channel(channel)
        self.set_param1(param1)
        if param2 is not None:
            self.set_param2(param2)

    def set_time(self, ticks: Optional[int] = None) -> None:
        self.time = encode_vlq(0 if ticks is None else as_integral(ticks, "Delta-time"))

    @property
    def ticks(self) -> int:
        return decode_vlq(self.time)

    def set_type(self, type: int) -> None:
        if isinstance(type, bool) or type not in _VALID_EVENT_TYPES:
            raise MIDIValidationError(f"Trying to set an unknown event: {type!r}")
        self.type = MidiEventType(type)

    def set_channel(self, channel: int) -> None:
        if isinstance(channel, bool) or not isinstance(channel, numbers.Integral) or not 0 <= channel <= 15:
            raise MIDIValidationError(f"Channel is out of bounds: {channel!r}")
        self.channel = int(channel)

    def set_param1(self, value: int) -> None:
        self.param1 = _check_data_byte("param1", value)

    def set_param2(self, value: Optional[int]) -> None:
        self.param2 = None if value is None else _check_data_byte("param2", value)

    @property
    def status_byte(self) -> int:
        return int(self.type) | (self.channel & 0x0F)

    def to_bytes(self) -> bytes:
        out = bytearray(self.time)
        out.append(self.status_byte)
        out.append(self.param1)
        if self.param2 is not None:
            out.append(self.param2)
        return bytes(out)

    def __repr__(self) -> str:
        return (
            f"MIDIEvent(type={self.type.name}, channel={self.channel}, "
            f"param1={self.param1}, param2={self.param2}, ticks={self.ticks})"
        )


class MetaEvent:
    """Meta event: ``[delta VLQ] FF type length payload``.

    ``type`` stays ``None`` until set; serialising an event in that state
    fails, which keeps "unset" apart from the SEQUENCE (0x00) type.
    """

    SEQUENCE = MetaEventType.SEQUENCE
    TEXT = MetaEventType.TEXT
    COPYRIGHT = MetaEventType.COPYRIGHT
    TRACK_NAME = MetaEventType.TRACK_NAME
    INSTRUMENT = MetaEventType.INSTRUMENT
    LYRIC = MetaEventType.LYRIC
    MARKER = MetaEventType.MARKER
    CUE_POINT = MetaEventType.CUE_POINT
    CHANNEL_PREFIX = MetaEventType.CHANNEL_PREFIX
    END_OF_TRACK = MetaEventType.END_OF_TRACK
    TEMPO = MetaEventType.TEMPO
    SMPTE = MetaEventType.SMPTE
    TIME_SIG = MetaEventType.TIME_SIG
    KEY_SIG = MetaEventType.KEY_SIG
    SEQ_EVENT = MetaEventType.SEQ_EVENT

    def __init__(
        self,
        type: Optional[int] = None,
        data: MetaData = None,
        time: Optional[int] = None,
    ) -> None:
        self.time = encode_vlq(0)
        self.type: Optional[int] = None
        self.data: MetaData = None
        self.set_time(time)
        self.set_type(type)
        self.set_data(data)

    def set_time(self, ticks: Optional[int] = None) -> None:
        self.time = encode_vlq(0 if ticks is None else as_integral(ticks, "Delta-time"))

    @property
    def ticks(self) -> int:
        return decode_vlq(self.time)

    def set_type(self, type: Optional[int]) -> None:
        if type is not None and (isinstance(type, bool) or not 0 <= int(type) <= 0x7F):
            raise MIDIValidationError(f"Meta-event type {type!r} out of range 0..127")
        self.type = None if type is None else int(type)

    def set_data(self, data: MetaData = None) -> None:
        self.data = data

    def payload(self) -> bytes:
        data = self.data
        if data is None:
            return b""
        if isinstance(data, str):
            try:
                return data.encode("latin-1")
            except UnicodeEncodeError as exc:
                raise MIDISerializationError(
                    "Meta-event text must use one byte per character"
                ) from exc
        if isinstance(data, numbers.Real):
            return bytes_from_codes([data])
        return bytes_from_codes(data)

    def to_bytes(self) -> bytes:
        if self.type is None:
            raise MIDISerializationError("Type for meta-event not specified.")
        payload = self.payload()
        out = bytearray(self.time)
        out += bytes((0xFF, self.type))
        out += encode_vlq(len(payload))
        out += payload
        return bytes(out)

    def __repr__(self) -> str:
        return f"MetaEvent(type={self.type}, data={self.data!r}, ticks={self.ticks})"


Event = Union[MIDIEvent, MetaEvent]


def event_to_bytes(event: Event) -> bytes:
    match event:
        case MIDIEvent() | MetaEvent():
            return event.to_bytes()
        case _:
            raise MIDISerializationError(
                f"Unsupported event {type(event).__name__}; expected MIDIEvent or MetaEvent"
            )
