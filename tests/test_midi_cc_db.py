import json
import os
import sys

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from midi_cc_db import CCResolver


def test_resolution_order(tmp_path):
    overrides = tmp_path / "cc.json"
    overrides.write_text(
        "// local tweaks\n" + json.dumps({"devices": {"synth": {"resonance": 44}}}),
        encoding="utf-8",
    )
    resolver = CCResolver(
        mapping={
            "aliases": {"filter": "cutoff"},
            "defaults": {"pan": 11},
            "devices": {"Synth": {"cutoff": 43}},
        },
        overrides_path=str(overrides),
        fallback_profile={"sustain": 70},
    )
    assert resolver.resolve("filter", device="synth") == (43, "configured")
    assert resolver.resolve("resonance", device="SYNTH") == (44, "configured")
    assert resolver.resolve("pan") == (11, "configured")
    assert resolver.resolve("sustain") == (70, "fallback")
    assert resolver.resolve("volume") == (7, "fallback")
    assert resolver.resolve("unknown-thing") == (74, "fallback")
    assert resolver.resolve(91) == (91, "configured")
    assert resolver.resolve("64") == (64, "configured")


def test_from_config_and_scaling():
    resolver = CCResolver.from_config({"midi_cc": {"defaults": {"volume": 39}}})
    assert resolver.resolve("volume") == (39, "configured")
    assert CCResolver.from_config({}).resolve("volume") == (7, "fallback")
    assert CCResolver.scale_0_1_to_0_127(0.0) == 0
    assert CCResolver.scale_0_1_to_0_127(0.5) == 64
    assert CCResolver.scale_0_1_to_0_127(2.0) == 127
    assert CCResolver.scale_0_1_to_0_127(None) == 0
