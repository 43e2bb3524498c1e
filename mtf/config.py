"""Decoder configuration profiles and presets."""

from __future__ import annotations

import codecs
import hashlib
import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .resource_limits import ResourceBudget

ENV_MODE = "MTF_DECODER_MODE"


@dataclass(frozen=True)
class DecoderConfig:
    """User facing options controlling how strictly images are decoded."""

    mode: str = "lenient"
    strict_header_checksums: bool = False
    strict_stream_checksums: bool = False
    verify_stream_checksums: bool = True
    strict_descriptors: bool = False
    ansi_encoding: str = "latin-1"
    default_record_size: int = 1
    budget: ResourceBudget = field(default_factory=ResourceBudget)
    description: str = ""

    def __post_init__(self) -> None:
        if self.default_record_size <= 0:
            raise ValueError("default_record_size must be positive")
        try:
            codecs.lookup(self.ansi_encoding)
        except LookupError as exc:
            raise ValueError(f"unknown ANSI encoding: {self.ansi_encoding}") from exc

    def with_overrides(self, overrides: Mapping[str, Any]) -> "DecoderConfig":
        known = {item.name for item in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"unknown decoder option(s): {', '.join(sorted(unknown))}")
        values = dict(overrides)
        budget = values.pop("budget", None)
        if isinstance(budget, Mapping):
            values["budget"] = replace(self.budget, **budget)
        elif budget is not None:
            values["budget"] = budget
        return replace(self, **values)

    def fingerprint(self) -> str:
        """Digest of every option that changes what a scan produces."""

        settings = asdict(self)
        settings.pop("description")
        blob = json.dumps(settings, sort_keys=True).encode("utf-8")
        return hashlib.sha256(blob).hexdigest()[:16]


_PRESET_MODES: Dict[str, DecoderConfig] = {
    "lenient": DecoderConfig(
        mode="lenient",
        description="Tag suspect headers and bad payload checksums, keep scanning.",
    ),
    "strict": DecoderConfig(
        mode="strict",
        strict_header_checksums=True,
        strict_stream_checksums=True,
        strict_descriptors=True,
        description="Fail on the first checksum mismatch or malformed descriptor.",
    ),
    "salvage": DecoderConfig(
        mode="salvage",
        verify_stream_checksums=False,
        description="Skip payload checksum verification to read damaged media quickly.",
    ),
}


def get_decoder_config(mode: str | None = None) -> DecoderConfig:
    if mode is None:
        return _PRESET_MODES["lenient"]
    try:
        return _PRESET_MODES[mode]
    except KeyError as exc:
        raise ValueError(f"Unknown decoder mode: {mode}") from exc


def available_modes() -> Dict[str, str]:
    return {name: config.description for name, config in _PRESET_MODES.items()}


def config_from_mapping(data: Mapping[str, Any]) -> DecoderConfig:
    """Build a configuration from a ``mode`` key plus per-option overrides."""

    values = dict(data)
    base = get_decoder_config(values.pop("mode", None))
    return base.with_overrides(values) if values else base


def load_config(path: Path) -> DecoderConfig:
    """Load a YAML configuration file."""

    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"configuration file {path} must contain a mapping")
    section = data.get("decoder", data)
    if not isinstance(section, Mapping):
        raise ValueError(f"'decoder' section of {path} must be a mapping")
    return config_from_mapping(section)


def config_from_env(default: Optional[DecoderConfig] = None) -> DecoderConfig:
    mode = os.environ.get(ENV_MODE)
    if mode:
        return get_decoder_config(mode)
    return default or get_decoder_config()


__all__ = [
    "DecoderConfig",
    "ENV_MODE",
    "available_modes",
    "config_from_env",
    "config_from_mapping",
    "get_decoder_config",
    "load_config",
]
