"""
Unit tests for extraction config loading.
"""
import json

import pytest
from pydantic import ValidationError

from packages.shared.config import CONFIG_PATH_ENV, load_config
from packages.shared.models import ExtractionConfig


class TestLoadConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
        config = load_config()
        assert config == ExtractionConfig()
        assert config.dedup_threshold == 0.75
        assert (config.lexical_weight, config.edit_weight, config.semantic_weight) == (0.4, 0.2, 0.4)

    def test_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"dedup_threshold": 0.8, "response_window_days": 30}), encoding="utf-8")
        config = load_config(path)
        assert config.dedup_threshold == 0.8
        assert config.response_window_days == 30
        assert config.trigger_window_days == 2

    def test_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "env.json"
        path.write_text(json.dumps({"track_negative_findings": True}), encoding="utf-8")
        monkeypatch.setenv(CONFIG_PATH_ENV, str(path))
        assert load_config().track_negative_findings is True

    def test_out_of_range_rejected(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"dedup_threshold": 1.5}), encoding="utf-8")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError):
            ExtractionConfig(lexical_weight=0.5, edit_weight=0.5, semantic_weight=0.5)
