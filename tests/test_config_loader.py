"""
Tests for config_loader module.
"""

import json
import pytest
from unittest.mock import patch
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from judge.config_loader import JudgeConfig, create_sample_config, load_config


class TestJudgeConfig:
    """Test configuration defaults and validation."""

    def test_defaults(self):
        config = JudgeConfig.default()

        assert config.cpu_period_us == 100000
        assert config.mount_path == "/app"
        assert config.fill_marker == "// FILL_IN_THE_BLANK"
        assert config.focus_threshold == 5
        assert config.validate() == (True, "")

    def test_run_deadline(self):
        config = JudgeConfig(wall_clock_factor=2.0, wall_clock_grace_sec=1.0)

        assert config.run_deadline(2) == 5.0

    @pytest.mark.parametrize("field,value", [
        ("cpu_period_us", 10),
        ("wall_clock_factor", 0),
        ("wall_clock_grace_sec", -1),
        ("compile_timeout_sec", 0),
        ("fill_marker", ""),
        ("focus_threshold", 0),
        ("mount_path", "app"),
        ("log_level", "LOUD"),
    ])
    def test_invalid_values(self, field, value):
        config = JudgeConfig(**{field: value})

        is_valid, message = config.validate()

        assert is_valid is False
        assert message

    def test_from_dict_normalizes_log_level(self):
        config = JudgeConfig.from_dict({"log_level": "debug", "language_images": {"python": "python:3.12"}})

        assert config.log_level == "DEBUG"
        assert config.language_images == {"python": "python:3.12"}


class TestLoadConfig:
    """Test reading configuration files."""

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.json")

        assert config == JudgeConfig.default()

    def test_valid_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"focus_threshold": 3, "scratch_root": "/var/tmp/judge"}))

        config = load_config(path)

        assert config.focus_threshold == 3
        assert config.scratch_root == "/var/tmp/judge"

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ValueError, match="Invalid JSON"):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"wall_clock_factor": -1}))

        with pytest.raises(ValueError, match="Invalid configuration"):
            load_config(path)

    def test_environment_variable(self, tmp_path):
        path = tmp_path / "judge.json"
        path.write_text(json.dumps({"compile_timeout_sec": 12}))

        with patch.dict('os.environ', {"JUDGE_CONFIG": str(path)}):
            config = load_config()

        assert config.compile_timeout_sec == 12

    def test_sample_config_loads(self, tmp_path):
        path = tmp_path / "sample.json"

        create_sample_config(path)

        assert load_config(path) == JudgeConfig.default()
