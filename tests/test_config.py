"""Tests for loader configuration."""

import pytest

from urdf_loader import LoaderConfig


def test_defaults():
    config = LoaderConfig()
    assert config.base_url == "/"
    assert config.working_path == ""
    assert config.request_timeout_s == 30.0
    assert config.default_rgba == (0.8, 0.8, 0.8, 1.0)
    assert config.xacro_args == {}


def test_base_url_gets_trailing_slash():
    assert LoaderConfig(base_url="http://localhost:8888").base_url == "http://localhost:8888/"


def test_invalid_values():
    with pytest.raises(ValueError, match="request_timeout_s"):
        LoaderConfig(request_timeout_s=0)
    with pytest.raises(ValueError, match="4 components"):
        LoaderConfig(default_rgba=(1.0, 0.0, 0.0))


def test_from_dict_ignores_unknown_keys():
    config = LoaderConfig.from_dict({"working_path": "robot", "theme": "dark"})
    assert config.working_path == "robot"
    assert not hasattr(config, "theme")


def test_from_yaml(tmp_path):
    path = tmp_path / "loader.yaml"
    path.write_text(
        "base_url: http://localhost:8888/\n"
        "working_path: /ws/src\n"
        "request_timeout_s: 5\n"
        "default_rgba: [1, 0.5, 0, 1]\n"
        "xacro_args:\n"
        "  prefix: left_\n"
        "  use_gripper: true\n"
    )

    config = LoaderConfig.from_yaml(path)

    assert config.base_url == "http://localhost:8888/"
    assert config.working_path == "/ws/src"
    assert config.request_timeout_s == 5
    assert config.default_rgba == (1.0, 0.5, 0.0, 1.0)
    assert config.xacro_args == {"prefix": "left_", "use_gripper": "True"}


def test_from_yaml_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert LoaderConfig.from_yaml(path) == LoaderConfig()


def test_from_yaml_rejects_non_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError, match="mapping"):
        LoaderConfig.from_yaml(path)
