# /mnt/data/midi_cc_db.py
"""Helpers for resolving named controller parameters to MIDI CC numbers.

Song plans refer to controllers by name (``volume``, ``pan``, ``cutoff``).
The resolver checks, in order: a device specific mapping, the global
``defaults`` table, the configured fallback profile and finally the General
MIDI table below. Every lookup reports where the number came from so the
renderer can count how many mappings were guessed.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional, Tuple

ORIGIN_CONFIGURED = "configured"
ORIGIN_FALLBACK = "fallback"

GENERAL_MIDI_CC: Dict[str, int] = {
    "modulation": 1,
    "breath": 2,
    "glide": 5,
    "volume": 7,
    "balance": 8,
    "pan": 10,
    "expression": 11,
    "sustain": 64,
    "portamento": 65,
    "sostenuto": 66,
    "soft": 67,
    "resonance": 71,
    "release": 72,
    "attack": 73,
    "cutoff": 74,
    "reverb_send": 91,
    "tremolo": 92,
    "chorus_send": 93,
    "delay_send": 94,
    "phaser": 95,
}


class CCResolver:
    def __init__(
        self,
        mapping: Optional[Dict[str, Any]] = None,
        overrides_path: Optional[str] = None,
        fallback_profile: Optional[Dict[str, int]] = None,
    ) -> None:
        self._device_maps: Dict[str, Dict[str, int]] = {}
        self._global_overrides: Dict[str, int] = {}
        self._aliases: Dict[str, str] = {}
        self.fallback: Dict[str, int] = {k.lower(): int(v) for k, v in (fallback_profile or {}).items()}

        self._merge(mapping or {})
        if overrides_path and os.path.exists(overrides_path):
            with open(overrides_path, "r", encoding="utf-8") as fh:
                text = fh.read()
            lines = [ln for ln in text.splitlines() if not ln.strip().startswith("//")]
            self._merge(json.loads("\n".join(lines) or "{}"))

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "CCResolver":
        section = cfg.get("midi_cc", {}) if isinstance(cfg, dict) else {}
        if not isinstance(section, dict):
            section = {}
        return cls(
            mapping=section,
            overrides_path=section.get("overrides_path"),
            fallback_profile=section.get("fallback_profile") or {},
        )

    def _merge(self, data: Dict[str, Any]) -> None:
        if not isinstance(data, dict):
            return
        aliases = data.get("aliases", {})
        if isinstance(aliases, dict):
            for alias, target in aliases.items():
                self._aliases[str(alias).lower()] = str(target).lower()

        defaults = data.get("defaults")
        if isinstance(defaults, dict):
            self._global_overrides.update({str(k).lower(): int(v) for k, v in defaults.items()})

        devices = data.get("devices")
        if isinstance(devices, dict):
            for dev, mapping in devices.items():
                if not isinstance(mapping, dict):
                    continue
                device_map = self._device_maps.setdefault(str(dev).lower(), {})
                for param, value in mapping.items():
                    if isinstance(value, (int, float)):
                        device_map[str(param).lower()] = int(value)

    # ------------------------------------------------------------------
    def _canonical_param(self, param: str) -> str:
        key = (param or "").lower()
        return self._aliases.get(key, key)

    def resolve(self, param: str, device: Optional[str] = None) -> Tuple[int, str]:
        """Resolve a parameter name (or a literal number) to a CC number.

        Returns ``(cc_number, origin)``; origin is ``"configured"`` when the
        number came from configuration or was given literally, and
        ``"fallback"`` otherwise.
        """

        if isinstance(param, int) or str(param).isdigit():
            return int(param) & 0x7F, ORIGIN_CONFIGURED

        canonical = self._canonical_param(param)
        if device:
            dev_map = self._device_maps.get(device.lower())
            if dev_map and canonical in dev_map:
                return int(dev_map[canonical]), ORIGIN_CONFIGURED

        if canonical in self._global_overrides:
            return int(self._global_overrides[canonical]), ORIGIN_CONFIGURED

        if canonical in self.fallback:
            return int(self.fallback[canonical]), ORIGIN_FALLBACK

        cc = GENERAL_MIDI_CC.get(canonical, GENERAL_MIDI_CC["cutoff"])
        return int(cc), ORIGIN_FALLBACK

    # ------------------------------------------------------------------
    @staticmethod
    def scale_0_1_to_0_127(v: float) -> int:
        v = 0.0 if v is None else max(0.0, min(1.0, float(v)))
        return int(round(v * 127.0))
