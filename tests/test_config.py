import pytest

from mtf.config import (
    ENV_MODE,
    DecoderConfig,
    available_modes,
    config_from_env,
    config_from_mapping,
    get_decoder_config,
    load_config,
)
from mtf.resource_limits import ResourceBudget, ResourceBudgetExceeded


def test_presets() -> None:
    assert set(available_modes()) == {"lenient", "strict", "salvage"}
    strict = get_decoder_config("strict")
    assert strict.strict_header_checksums and strict.strict_stream_checksums and strict.strict_descriptors
    assert not get_decoder_config("salvage").verify_stream_checksums
    assert get_decoder_config() == get_decoder_config("lenient")
    with pytest.raises(ValueError):
        get_decoder_config("paranoid")


def test_overrides_merge_budget() -> None:
    config = config_from_mapping(
        {"mode": "strict", "ansi_encoding": "cp1252", "budget": {"max_descriptor_bytes": 1024}}
    )
    assert config.mode == "strict"
    assert config.ansi_encoding == "cp1252"
    assert config.budget.max_descriptor_bytes == 1024
    assert config.budget.max_streams_per_block == ResourceBudget().max_streams_per_block


def test_unknown_options_are_rejected() -> None:
    with pytest.raises(ValueError):
        config_from_mapping({"colour": "blue"})
    with pytest.raises(ValueError):
        DecoderConfig(ansi_encoding="no-such-codec")
    with pytest.raises(ValueError):
        DecoderConfig(default_record_size=0)


def test_load_yaml_config(tmp_path) -> None:
    path = tmp_path / "mtf.yaml"
    path.write_text(
        "decoder:\n"
        "  mode: salvage\n"
        "  default_record_size: 1024\n"
        "  budget:\n"
        "    max_loaded_payload_bytes: 4096\n",
        encoding="utf-8",
    )
    config = load_config(path)
    assert config.mode == "salvage"
    assert config.default_record_size == 1024
    assert config.budget.max_loaded_payload_bytes == 4096

    flat = tmp_path / "flat.yaml"
    flat.write_text("mode: strict\n", encoding="utf-8")
    assert load_config(flat) == get_decoder_config("strict")

    broken = tmp_path / "broken.yaml"
    broken.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(broken)


def test_mode_from_environment(monkeypatch) -> None:
    monkeypatch.setenv(ENV_MODE, "strict")
    assert config_from_env().mode == "strict"
    monkeypatch.delenv(ENV_MODE)
    assert config_from_env().mode == "lenient"


def test_budget_limits() -> None:
    budget = ResourceBudget(max_loaded_payload_bytes=10, max_filemark_entries=2)
    budget.ensure_loaded_payload(10)
    with pytest.raises(ResourceBudgetExceeded):
        budget.ensure_loaded_payload(11)
    with pytest.raises(ResourceBudgetExceeded):
        budget.ensure_filemark_entries(3)


def test_fingerprint_tracks_decoding_options() -> None:
    lenient = get_decoder_config()
    assert lenient.fingerprint() == DecoderConfig().fingerprint()
    assert lenient.fingerprint() != get_decoder_config("strict").fingerprint()
    assert lenient.fingerprint() != get_decoder_config("salvage").fingerprint()
    assert lenient.with_overrides({"description": "renamed"}).fingerprint() == lenient.fingerprint()
    tighter = lenient.with_overrides({"budget": {"max_loaded_payload_bytes": 10}})
    assert tighter.fingerprint() != lenient.fingerprint()
