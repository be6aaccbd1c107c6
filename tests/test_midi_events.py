import os
import sys

import numpy as np
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from midi_codec import MIDISerializationError, MIDIValidationError
from midi_events import MetaEvent, MetaEventType, MIDIEvent, MidiEventType, event_to_bytes


def test_event_type_constants():
    assert [int(t) for t in MidiEventType] == [0x80, 0x90, 0xA0, 0xB0, 0xC0, 0xD0, 0xE0]
    assert MIDIEvent.NOTE_ON == 0x90
    assert MIDIEvent.PITCH_BEND == MidiEventType.PITCH_BEND
    assert MetaEvent.TEMPO == 0x51
    assert MetaEvent.END_OF_TRACK == MetaEventType.END_OF_TRACK == 0x2F
    assert MetaEvent.SEQUENCE == 0


def test_note_on_layout_uses_type_or_channel():
    ev = MIDIEvent(type=MIDIEvent.NOTE_ON, channel=9, param1=36, param2=100, time=0)
    assert ev.to_bytes() == bytes([0x00, 0x99, 36, 100])
    ev = MIDIEvent(type=MIDIEvent.NOTE_ON, channel=0, param1=60, param2=90)
    assert ev.to_bytes() == bytes([0x00, 0x90, 60, 90])
    assert ev.time == b"\x00"


def test_program_change_omits_param2():
    ev = MIDIEvent(type=MIDIEvent.PROGRAM_CHANGE, channel=0, param1=19)
    assert ev.param2 is None
    assert ev.to_bytes() == bytes([0x00, 0xC0, 19])
    pressure = MIDIEvent(type=MIDIEvent.CHANNEL_AFTERTOUCH, channel=3, param1=64)
    assert pressure.to_bytes() == bytes([0x00, 0xD3, 64])


def test_delta_time_is_vlq_encoded():
    ev = MIDIEvent(type=MIDIEvent.NOTE_ON, channel=0, param1=60, param2=90, time=128)
    data = ev.to_bytes()
    assert data[:2] == b"\x81\x00"
    assert ev.ticks == 128


def test_rejects_unknown_types_and_channels():
    for bad_type in (0x70, 0x85, 0xF0, 0xFF):
        with pytest.raises(MIDIValidationError, match="unknown event"):
            MIDIEvent(type=bad_type, channel=0, param1=0)
    for bad_channel in (-1, 16):
        with pytest.raises(MIDIValidationError, match="out of bounds"):
            MIDIEvent(type=MIDIEvent.NOTE_ON, channel=bad_channel, param1=60)
    assert MIDIEvent(type=MIDIEvent.NOTE_ON, channel=15, param1=60, param2=1).channel == 15


def test_data_bytes_are_range_checked():
    with pytest.raises(MIDIValidationError):
        MIDIEvent(type=MIDIEvent.NOTE_ON, channel=0, param1=128, param2=1)
    with pytest.raises(MIDIValidationError):
        MIDIEvent(type=MIDIEvent.NOTE_ON, channel=0, param1=60, param2=-1)


def test_failed_setter_leaves_event_untouched():
    ev = MIDIEvent(type=MIDIEvent.NOTE_ON, channel=2, param1=60, param2=90)
    before = ev.to_bytes()
    with pytest.raises(MIDIValidationError):
        ev.set_channel(99)
    with pytest.raises(MIDIValidationError):
        ev.set_type(0x10)
    with pytest.raises(MIDIValidationError):
        ev.set_time(-5)
    assert ev.to_bytes() == before


def test_serialisation_is_a_pure_read():
    ev = MIDIEvent(type=MIDIEvent.CONTROLLER, channel=1, param1=7, param2=100, time=300)
    assert ev.to_bytes() == ev.to_bytes()
    ev.set_param2(50)
    assert ev.to_bytes()[-1] == 50


def test_meta_payload_kinds():
    tempo = MetaEvent(type=MetaEvent.TEMPO, data=[7, 161, 32], time=0)
    assert tempo.to_bytes() == bytes([0x00, 0xFF, 0x51, 3, 7, 161, 32])
    eot = MetaEvent(type=MetaEvent.END_OF_TRACK, time=0)
    assert eot.to_bytes() == bytes([0x00, 0xFF, 0x2F, 0])
    prefix = MetaEvent(type=MetaEvent.CHANNEL_PREFIX, data=9)
    assert prefix.to_bytes() == bytes([0x00, 0xFF, 0x20, 1, 9])
    name = MetaEvent(type=MetaEvent.TRACK_NAME, data="Piano", time=10)
    assert name.to_bytes() == bytes([10, 0xFF, 0x03, 5]) + b"Piano"


def test_meta_text_length_uses_vlq_past_127():
    text = "x" * 200
    data = MetaEvent(type=MetaEvent.LYRIC, data=text).to_bytes()
    assert data[:3] == bytes([0x00, 0xFF, 0x05])
    assert data[3:5] == b"\x81\x48"
    assert data[5:] == text.encode("latin-1")


def test_meta_type_must_be_set_before_serialising():
    ev = MetaEvent(data=[1, 2])
    with pytest.raises(MIDISerializationError, match="not specified"):
        ev.to_bytes()
    ev.set_type(MetaEvent.SEQUENCE)
    assert ev.to_bytes() == bytes([0x00, 0xFF, 0x00, 2, 1, 2])


def test_meta_payload_errors_surface_at_serialisation():
    with pytest.raises(MIDISerializationError):
        MetaEvent(type=MetaEvent.TEXT, data=[300]).to_bytes()
    with pytest.raises(MIDISerializationError):
        MetaEvent(type=MetaEvent.TEXT, data="♫").to_bytes()


def test_event_to_bytes_dispatch():
    note = MIDIEvent(type=MIDIEvent.NOTE_OFF, channel=0, param1=60, param2=0)
    meta = MetaEvent(type=MetaEvent.MARKER, data="A")
    assert event_to_bytes(note) == note.to_bytes()
    assert event_to_bytes(meta) == meta.to_bytes()
    with pytest.raises(MIDISerializationError):
        event_to_bytes(b"\x00\x90\x3C\x40")


def test_meta_single_number_payload_accepts_integral_values():
    assert MetaEvent(type=MetaEvent.CHANNEL_PREFIX, data=9.0).to_bytes() == bytes([0x00, 0xFF, 0x20, 1, 9])
    assert MetaEvent(type=MetaEvent.CHANNEL_PREFIX, data=np.int64(3)).to_bytes()[-1] == 3
    assert MetaEvent(type=MetaEvent.SEQUENCE, data=[0, 1.0]).to_bytes()[-2:] == b"\x00\x01"
    for bad in (9.5, float("nan"), object(), [1, "x"]):
        with pytest.raises(MIDISerializationError):
            MetaEvent(type=MetaEvent.CHANNEL_PREFIX, data=bad).to_bytes()


def test_integral_inputs_from_numpy_and_whole_floats():
    ev = MIDIEvent(
        type=MIDIEvent.NOTE_ON,
        channel=np.int64(3),
        param1=np.int64(60),
        param2=np.uint8(100),
        time=np.int64(96),
    )
    assert ev.to_bytes() == bytes([96, 0x93, 60, 100])
    assert type(ev.channel) is int and type(ev.param1) is int
    ev.set_time(2.0)
    assert ev.ticks == 2
    meta = MetaEvent(type=MetaEvent.MARKER, data="A", time=np.int32(5))
    assert meta.ticks == 5


def test_fractional_ticks_and_data_bytes_are_rejected():
    ev = MIDIEvent(type=MIDIEvent.NOTE_ON, channel=0, param1=60, param2=90, time=4)
    for bad in (1.7, "3", True):
        with pytest.raises(MIDIValidationError):
            ev.set_time(bad)
    assert ev.ticks == 4
    with pytest.raises(MIDIValidationError):
        MetaEvent(type=MetaEvent.TEXT, time=0.5)
    with pytest.raises(MIDIValidationError):
        ev.set_param1(60.5)
    with pytest.raises(MIDIValidationError):
        ev.set_param2(True)
    with pytest.raises(MIDIValidationError, match="out of bounds"):
        ev.set_channel(2.0)
