"""
Tests for apkdepot.config module.

Tests configuration loading including:
- Built-in defaults
- YAML file merging
- Environment overrides
- Relative path resolution
- Error handling
"""

from __future__ import annotations

from pathlib import Path

import pytest

from apkdepot.config import load_depot_config
from apkdepot.config.loader import _deep_merge_dicts
from apkdepot.exceptions import ConfigError


class TestDefaults:
    """Tests for built-in defaults."""

    def test_defaults_without_file(self, tmp_test_dir, monkeypatch):
        monkeypatch.chdir(tmp_test_dir)

        settings = load_depot_config(env={})

        assert settings.apk_dir == (tmp_test_dir / "apks").resolve()
        assert settings.metadata_file == (tmp_test_dir / "metadata.json").resolve()
        assert settings.staging_dir is None
        assert settings.max_upload_size == 500 * 1024 * 1024
        assert settings.host == "0.0.0.0"
        assert settings.port == 8080
        assert settings.download_prefix == "/apks"
        assert settings.cors_allowed_origins == ("*",)
        assert settings.config_path is None

    def test_picks_up_depot_yaml_in_cwd(self, tmp_test_dir, monkeypatch, create_yaml_file):
        create_yaml_file("depot.yaml", {"server": {"port": 9100}})
        monkeypatch.chdir(tmp_test_dir)

        settings = load_depot_config(env={})

        assert settings.port == 9100
        assert settings.config_path == (tmp_test_dir / "depot.yaml").resolve()


class TestConfigFile:
    """Tests for explicit config files."""

    def test_merges_over_defaults(self, create_yaml_file):
        path = create_yaml_file(
            "conf/depot.yaml",
            {
                "storage": {"apk_dir": "/srv/apks"},
                "server": {"cors_allowed_origins": ["https://admin.example.com"]},
            },
        )

        settings = load_depot_config(path, env={})

        assert settings.apk_dir == Path("/srv/apks")
        # untouched keys keep their defaults
        assert settings.port == 8080
        assert settings.cors_allowed_origins == ("https://admin.example.com",)

    def test_relative_paths_resolve_against_config_dir(self, create_yaml_file):
        path = create_yaml_file(
            "conf/depot.yaml",
            {"storage": {"apk_dir": "data/apks", "staging_dir": "tmp"}},
        )

        settings = load_depot_config(path, env={})

        assert settings.apk_dir == (path.parent / "data" / "apks").resolve()
        assert settings.staging_dir == (path.parent / "tmp").resolve()

    def test_empty_file_uses_defaults(self, tmp_test_dir):
        path = tmp_test_dir / "depot.yaml"
        path.write_text("", encoding="utf-8")

        assert load_depot_config(path, env={}).port == 8080

    def test_missing_explicit_file_raises(self, tmp_test_dir):
        with pytest.raises(ConfigError, match="not found"):
            load_depot_config(tmp_test_dir / "nope.yaml", env={})

    def test_invalid_yaml_raises(self, tmp_test_dir):
        path = tmp_test_dir / "depot.yaml"
        path.write_text("server: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigError, match="YAML"):
            load_depot_config(path, env={})

    def test_non_mapping_top_level_raises(self, tmp_test_dir):
        path = tmp_test_dir / "depot.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigError, match="mapping"):
            load_depot_config(path, env={})

    @pytest.mark.parametrize(
        "data, match",
        [
            ({"server": {"port": "eighty"}}, "server.port"),
            ({"server": {"port": 70000}}, "out of range"),
            ({"upload": {"max_size": 0}}, "positive"),
            ({"server": {"cors_allowed_origins": "*"}}, "cors_allowed_origins"),
            ({"storage": "apks"}, "storage"),
        ],
    )
    def test_bad_values_raise(self, create_yaml_file, data, match):
        path = create_yaml_file("depot.yaml", data)

        with pytest.raises(ConfigError, match=match):
            load_depot_config(path, env={})


class TestEnvironment:
    """Tests for environment overrides."""

    def test_env_wins_over_file(self, create_yaml_file):
        path = create_yaml_file("depot.yaml", {"server": {"port": 9000}})

        settings = load_depot_config(
            path,
            env={
                "PORT": "9999",
                "APKDEPOT_APK_DIR": "/data/apks",
                "APKDEPOT_METADATA_FILE": "/data/metadata.json",
            },
        )

        assert settings.port == 9999
        assert settings.apk_dir == Path("/data/apks")
        assert settings.metadata_file == Path("/data/metadata.json")

    def test_invalid_port_env(self, tmp_test_dir, monkeypatch):
        monkeypatch.chdir(tmp_test_dir)

        with pytest.raises(ConfigError, match="PORT"):
            load_depot_config(env={"PORT": "http"})

    def test_reads_process_environment_by_default(self, tmp_test_dir, monkeypatch):
        monkeypatch.chdir(tmp_test_dir)
        monkeypatch.setenv("PORT", "8181")

        assert load_depot_config().port == 8181


class TestDeepMerge:
    """Tests for _deep_merge_dicts."""

    def test_nested_merge_and_list_replace(self):
        base = {"a": {"x": 1, "y": [1, 2]}, "b": 1}
        overlay = {"a": {"y": [3]}, "c": 2}

        merged = _deep_merge_dicts(base, overlay)

        assert merged == {"a": {"x": 1, "y": [3]}, "b": 1, "c": 2}
        assert base == {"a": {"x": 1, "y": [1, 2]}, "b": 1}
