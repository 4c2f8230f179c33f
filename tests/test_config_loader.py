"""
Tests for config.loader and config.schema.

Tests cover:
- Defaults without a config file
- Loading valid YAML, partial sections
- Missing file, invalid YAML, non-mapping root
- Pydantic validation errors mapped to ConfigValidationError
"""

import pytest
import yaml

from prompt_forge.config.constants import DEFAULT_DB_PATH, TITLE_MAX_LENGTH
from prompt_forge.config.loader import load_config
from prompt_forge.config.schema import ForgeConfig
from prompt_forge.exceptions import ConfigFileNotFoundError, ConfigValidationError


def _write_yaml(path, data):
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_no_path_returns_defaults():
    config = load_config(None)

    assert config == ForgeConfig()
    assert config.store.db_path == DEFAULT_DB_PATH
    assert config.store.migrations_dir is None
    assert config.migrations.on_failure == "continue"
    assert config.editor.title_max_length == TITLE_MAX_LENGTH


def test_empty_file_returns_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")

    assert load_config(path) == ForgeConfig()


def test_load_full_config(tmp_path):
    migrations_dir = tmp_path / "units"
    migrations_dir.mkdir()
    path = _write_yaml(
        tmp_path / "forge.yaml",
        {
            "store": {
                "db_path": str(tmp_path / "forge.db"),
                "migrations_dir": str(migrations_dir),
                "busy_timeout_seconds": 1.5,
            },
            "migrations": {"on_failure": "halt"},
            "editor": {"title_max_length": 30, "history_limit": 25},
        },
    )

    config = load_config(path)

    assert config.store.db_path == str(tmp_path / "forge.db")
    assert config.store.migrations_dir == str(migrations_dir)
    assert config.store.busy_timeout_seconds == 1.5
    assert config.migrations.on_failure == "halt"
    assert config.editor.title_max_length == 30
    assert config.editor.history_limit == 25


def test_partial_config_keeps_other_defaults(tmp_path):
    path = _write_yaml(tmp_path / "forge.yaml", {"editor": {"history_limit": 3}})

    config = load_config(path)

    assert config.editor.history_limit == 3
    assert config.store.db_path == DEFAULT_DB_PATH


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigFileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("store: [unclosed", encoding="utf-8")

    with pytest.raises(ConfigValidationError, match="Invalid YAML"):
        load_config(path)


def test_non_mapping_root_raises(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")

    with pytest.raises(ConfigValidationError, match="must be a mapping"):
        load_config(path)


@pytest.mark.parametrize(
    "data, location",
    [
        ({"migrations": {"on_failure": "retry"}}, "migrations.on_failure"),
        ({"store": {"db_path": "  "}}, "store.db_path"),
        ({"store": {"busy_timeout_seconds": -1}}, "store.busy_timeout_seconds"),
        ({"store": {"migrations_dir": "/definitely/not/here"}}, "store.migrations_dir"),
        ({"editor": {"history_limit": 0}}, "editor.history_limit"),
        ({"editor": {"title_max_length": -5}}, "editor.title_max_length"),
    ],
)
def test_invalid_values_report_field_location(tmp_path, data, location):
    path = _write_yaml(tmp_path / "forge.yaml", data)

    with pytest.raises(ConfigValidationError) as exc_info:
        load_config(path)

    assert location in str(exc_info.value)
