# tests/test_config_manager.py
import pytest
import yaml
import os
from soilroot import config_manager
import logging

# Fixture to create a temporary valid config file
@pytest.fixture
def temp_valid_config_file(tmp_path):
    config_data = {
        "paths": {"output_dir": "test_output"},
        "simulation": {"random_seed": 123, "log_level": "DEBUG"},
        "root": {"mode": "planar", "phase": 3},
        "nested_params": {"level1": {"level2": "value"}}
    }
    config_file = tmp_path / "valid_config.yaml"
    with open(config_file, 'w') as f:
        yaml.dump(config_data, f)
    return str(config_file), config_data

# Fixture to create a temporary malformed config file
@pytest.fixture
def temp_malformed_config_file(tmp_path):
    config_file = tmp_path / "malformed_config.yaml"
    with open(config_file, 'w') as f:
        f.write("paths: {output_dir: test_output\nlog_level: INFO") # Malformed YAML
    return str(config_file)

def test_load_config_valid(temp_valid_config_file):
    config_path, expected_data = temp_valid_config_file
    config = config_manager.load_config(config_path)
    assert config == expected_data
    assert config_manager.get_param(config, "simulation.random_seed") == 123

def test_load_config_non_existent():
    with pytest.raises(FileNotFoundError):
        config_manager.load_config("non_existent_config.yaml")

def test_load_config_malformed(temp_malformed_config_file):
    with pytest.raises(yaml.YAMLError):
        config_manager.load_config(temp_malformed_config_file)

def test_load_config_empty_file_gives_empty_dict(tmp_path):
    empty = tmp_path / "empty.yaml"
    empty.write_text("")
    assert config_manager.load_config(str(empty)) == {}

def test_get_param_existing(temp_valid_config_file):
    config_path, _ = temp_valid_config_file
    config = config_manager.load_config(config_path)

    assert config_manager.get_param(config, "paths.output_dir") == "test_output"
    assert config_manager.get_param(config, "root.phase") == 3
    assert config_manager.get_param(config, "nested_params.level1.level2") == "value"

def test_get_param_non_existent(temp_valid_config_file, caplog):
    config_path, _ = temp_valid_config_file
    config = config_manager.load_config(config_path)

    assert config_manager.get_param(config, "non.existent.key") is None
    assert config_manager.get_param(config, "non.existent.key", "default_val") == "default_val"
    assert config_manager.get_param(config, "root.total_steps", 10) == 10
    assert "Parameter 'root.total_steps' not found" in caplog.text

def test_get_param_on_none_config():
    assert config_manager.get_param(None, "root.mode", "sectional") == "sectional"

def test_create_default_config_new_file(tmp_path):
    default_config_path = tmp_path / "default_config.yaml"
    assert not os.path.exists(default_config_path)

    config_manager.create_default_config(str(default_config_path))
    assert os.path.exists(default_config_path)

    loaded = config_manager.load_config(str(default_config_path))
    for section in ("paths", "simulation", "soil", "root", "environment", "visualization"):
        assert section in loaded
    assert loaded["root"]["branch_n"] == 2
    assert loaded["root"]["boundary_mode"] == "prune"
    assert loaded["environment"]["enabled"] is False


def test_create_default_config_existing_file(tmp_path, caplog):
    default_config_path = tmp_path / "existing_default_config.yaml"
    with open(default_config_path, "w") as f:
        f.write("some: content")

    with caplog.at_level(logging.INFO, logger="soilroot.config_manager"):
        config_manager.create_default_config(str(default_config_path))

    with open(default_config_path, "r") as f:
        assert f.read() == "some: content"
    assert f"Configuration file already exists: {str(default_config_path)}" in caplog.text
