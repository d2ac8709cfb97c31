"""Tests for YAML configuration loading."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
import yaml

from secretvault.config import CONFIG_NAME, load_config, load_rules


def _write(home: Path, data) -> None:
    home.mkdir(parents=True, exist_ok=True)
    (home / CONFIG_NAME).write_text(data if isinstance(data, str) else yaml.dump(data))


class TestLoadConfig:
    """Config file, env override and fallbacks."""

    def test_defaults_without_file(self, vault_home: Path) -> None:
        config = load_config()
        assert config.op_vault == "Private"
        assert config.extra_sensitive_names == []

    def test_reads_yaml(self, vault_home: Path) -> None:
        _write(vault_home, {"op_vault": "Engineering", "extra_ignored_dirs": ["fixtures"]})
        config = load_config()
        assert config.op_vault == "Engineering"
        assert config.extra_ignored_dirs == ["fixtures"]

    def test_explicit_home(self, tmp_path: Path) -> None:
        _write(tmp_path / "elsewhere", {"op_vault": "Shared"})
        assert load_config(tmp_path / "elsewhere").op_vault == "Shared"

    def test_env_overrides_file(self, vault_home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _write(vault_home, {"op_vault": "Engineering"})
        monkeypatch.setenv("SECRETVAULT_OP_VAULT", "Ops")
        assert load_config().op_vault == "Ops"

    @pytest.mark.parametrize("raw", [
        "op_vault: [unclosed",
        "extra_sensitive_names: 42\n",
        "- just\n- a list\n",
    ])
    def test_bad_file_falls_back(
        self, vault_home: Path, raw: str, caplog: pytest.LogCaptureFixture,
    ) -> None:
        _write(vault_home, raw)
        with caplog.at_level(logging.WARNING, logger="secretvault.config"):
            config = load_config()
        assert config.op_vault == "Private"
        assert "Failed to load config" in caplog.text

    def test_empty_file(self, vault_home: Path) -> None:
        _write(vault_home, "")
        assert load_config().op_vault == "Private"


def test_load_rules_applies_additions(vault_home: Path) -> None:
    _write(vault_home, {"extra_sensitive_suffixes": [".Secret"], "extra_sensitive_dirs": ["vault"]})
    rules = load_rules()
    assert ".secret" in rules.suffixes
    assert ".pem" in rules.suffixes
    assert "vault" in rules.sensitive_dirs
