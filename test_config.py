"""
Configuration tests: defaults, YAML loading and saving.
"""

import shutil
import sys
import tempfile
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent))

from config import (
    MAX_RECOVERY_RETRIES,
    Config,
    get_default_config,
    load_config,
    load_config_from_file,
    save_config,
)


@pytest.fixture
def temp_dir():
    directory = tempfile.mkdtemp(prefix="planrunner_config_")
    yield Path(directory)
    shutil.rmtree(directory, ignore_errors=True)


def test_defaults():
    config = get_default_config()
    assert config.recovery.max_retries == MAX_RECOVERY_RETRIES == 1
    assert config.engine.package_manager == "npm"
    assert config.engine.min_content_length == 10
    assert config.timing.file_delay == 0.1
    assert config.timing.command_delay == 0.5
    assert set(config.list_models()) == {"claude", "gpt4", "deepseek"}
    assert "npm" in config.shell.allowed_commands


def test_provider_config_shape():
    provider_config = get_default_config().to_provider_config()
    assert provider_config["models"]["deepseek"] == {
        "provider": "ollama",
        "model": "deepseek-coder-v2:16b",
        "base_url": "http://localhost:11434",
    }


def test_load_partial_file_keeps_other_defaults(temp_dir):
    path = temp_dir / "planrunner.yaml"
    path.write_text(
        "engine:\n"
        "  package_manager: pnpm\n"
        "timing:\n"
        "  command_delay: 0\n"
        "recovery:\n"
        "  max_retries: 3\n"
        "  port_conflict: false\n"
    )

    config = load_config_from_file(path)

    assert config.engine.package_manager == "pnpm"
    assert config.engine.check_after_write is True
    assert config.timing.command_delay == 0
    assert config.timing.file_delay == 0.1
    assert config.recovery.max_retries == 3
    assert config.recovery.port_conflict is False
    assert config.recovery.build_errors is True
    assert "claude" in config.models


def test_empty_file_gives_defaults(temp_dir):
    path = temp_dir / "empty.yaml"
    path.write_text("")
    assert load_config_from_file(path).recovery.max_retries == MAX_RECOVERY_RETRIES


def test_save_and_load(temp_dir):
    config = Config()
    config.engine.package_manager = "yarn"
    config.recovery.fix_attempts = 5
    config.shell.timeout = 120
    config.logging.level = "DEBUG"

    path = temp_dir / "nested" / "config.yaml"
    save_config(config, path)
    loaded = load_config(path)

    assert loaded.engine.package_manager == "yarn"
    assert loaded.recovery.fix_attempts == 5
    assert loaded.shell.timeout == 120
    assert loaded.logging.level == "DEBUG"


def test_explicit_missing_path_raises(temp_dir):
    with pytest.raises(FileNotFoundError):
        load_config(temp_dir / "missing.yaml")


def test_invalid_yaml_raises(temp_dir):
    path = temp_dir / "broken.yaml"
    path.write_text("engine: [unclosed\n")
    with pytest.raises(yaml.YAMLError):
        load_config_from_file(path)
