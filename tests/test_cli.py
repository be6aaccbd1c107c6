import json
import os
import sys

import mido
import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import cli

from tests._test_utils import prepare_config


def test_selftest_passes(tmp_path, capsys):
    config_path, _cfg = prepare_config(str(tmp_path))
    cli.main(["--config", config_path, "--selftest"])
    out = capsys.readouterr().out
    assert "[Σ][FAIL]" not in out
    assert out.count("[Σ][PASS]") == 4


def test_dry_run_prints_plan_without_writing(tmp_path, capsys):
    config_path, cfg = prepare_config(str(tmp_path))
    cli.main(["--config", config_path, "--title", "sketch", "--bpm", "96", "--dry-run"])
    out = capsys.readouterr().out
    payload = json.loads(out[out.index("{"):])
    assert payload == {"title": "sketch", "bpm": 96.0}
    assert os.listdir(cfg["paths"]["midi_export"]) == []


def test_render_from_plan_file(tmp_path, capsys):
    config_path, cfg = prepare_config(str(tmp_path))
    plan_path = tmp_path / "plan.yaml"
    plan_path.write_text(
        "title: groove\n"
        "bpm: 100\n"
        "tracks:\n"
        "  - name: bass\n"
        "    channel: 1\n"
        "    program: 33\n"
        "    steps:\n"
        "      - {beat: 0, note: e2, length: 0.5}\n"
        "      - {beat: 1, note: g2, length: 0.5}\n",
        encoding="utf-8",
    )
    cli.main(["--config", config_path, "--plan", str(plan_path), "--ticks", "480", "--generic-mime"])
    out = capsys.readouterr().out
    report = json.loads(out[out.index("{"):])
    assert report["title"] == "groove"
    assert report["ticks_per_beat"] == 480
    assert report["format"] == 0
    assert report["mime_type"] == "application/octet-stream"
    assert os.path.dirname(report["paths"]["midi"]) == cfg["paths"]["midi_export"]

    parsed = mido.MidiFile(report["paths"]["midi"])
    assert parsed.ticks_per_beat == 480
    programs = [m.program for m in parsed.tracks[0] if m.type == "program_change"]
    assert programs == [33]


def test_missing_plan_and_title_is_an_error(tmp_path):
    config_path, _cfg = prepare_config(str(tmp_path))
    with pytest.raises(SystemExit):
        cli.main(["--config", config_path])
