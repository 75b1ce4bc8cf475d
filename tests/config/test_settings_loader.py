"""Tests for getcerts.config -- loading, env resolution, validation, overrides."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from getcerts.config import load_settings
from getcerts.config.loader import additional_checks, resolve_env, validate_schema
from getcerts.config.settings import (
    LETSENCRYPT_DIRECTORY,
    LETSENCRYPT_STAGING_DIRECTORY,
    build_settings,
)
from getcerts.core.errors import ConfigValidationError
from getcerts.core.types import ExitCode


def _write_yaml(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "getcerts.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestDefaults:
    def test_defaults_without_file(self):
        settings = load_settings()
        assert settings.paths.home == Path("/home/acme")
        assert settings.paths.key_dir == Path("/home/acme/keys")
        assert settings.paths.cert_dir == Path("/home/acme/certs")
        assert settings.paths.account_key == Path("/home/acme/keys/letsencrypt-account.key")
        assert settings.paths.request_profile == Path("/home/acme/etc/request-profile.yaml")
        assert settings.acme.directory_url == LETSENCRYPT_DIRECTORY
        assert settings.acme.staging is False
        assert settings.keys.rsa_key_size == 4096
        assert settings.renewal.min_days_left == 30
        assert settings.install.reload_command == ("systemctl", "restart", "httpd")
        assert settings.install.key_mode == 0o600
        assert settings.chain.intermediate_prefix == "lets-encrypt-x1-cross-signed"

    def test_home_override_moves_derived_paths(self):
        settings = load_settings(home="/srv/acme")
        assert settings.paths.key_dir == Path("/srv/acme/keys")
        assert settings.paths.domain_list == Path("/srv/acme/etc/domain.txt")

    def test_per_domain_paths(self):
        paths = load_settings(home="/h").paths
        assert paths.key_file("example.com") == Path("/h/keys/example.com.key")
        assert paths.csr_file("example.com") == Path("/h/certs/example.com.csr")
        assert paths.cert_file("example.com") == Path("/h/certs/example.com.crt")
        assert paths.san_file("example.com") == Path("/h/etc/example.com-san.txt")


class TestLoading:
    def test_yaml_file(self, tmp_path):
        path = _write_yaml(tmp_path, {"renewal": {"min_days_left": 14}})
        assert load_settings(path).renewal.min_days_left == 14

    def test_json_file(self, tmp_path):
        path = tmp_path / "getcerts.json"
        path.write_text(json.dumps({"acme": {"staging": True}}), encoding="utf-8")
        settings = load_settings(path)
        assert settings.acme.active_directory_url == LETSENCRYPT_STAGING_DIRECTORY

    def test_empty_file_means_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_settings(path).renewal.min_days_left == 30

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="not found"):
            load_settings(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("acme: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="cannot parse"):
            load_settings(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="mapping"):
            load_settings(path)

    def test_key_mode_octal_string(self, tmp_path):
        path = _write_yaml(tmp_path, {"install": {"key_mode": "0640"}})
        assert load_settings(path).install.key_mode == 0o640

    def test_validation_error_exit_code(self, tmp_path):
        path = _write_yaml(tmp_path, {"unknown": 1})
        with pytest.raises(ConfigValidationError) as exc_info:
            load_settings(path)
        assert exc_info.value.exit_code == ExitCode.CONFIG_INVALID


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------


class TestEnvResolution:
    def test_variable_is_substituted(self, monkeypatch):
        monkeypatch.setenv("ACME_HOME", "/opt/acme")
        data = {"paths": {"home": "${ACME_HOME}"}}
        assert resolve_env(data) == {"paths": {"home": "/opt/acme"}}
        assert data["paths"]["home"] == "${ACME_HOME}"

    def test_default_used_when_unset(self, monkeypatch):
        monkeypatch.delenv("GETCERTS_TEST_UNSET", raising=False)
        data = {"install": {"reload_command": ["${GETCERTS_TEST_UNSET:-apachectl}", "graceful"]}}
        data = resolve_env(data)
        assert data["install"]["reload_command"] == ["apachectl", "graceful"]

    def test_unset_without_default_fails(self, monkeypatch):
        monkeypatch.delenv("GETCERTS_TEST_UNSET", raising=False)
        with pytest.raises(ConfigValidationError, match="paths.home"):
            resolve_env({"paths": {"home": "${GETCERTS_TEST_UNSET}"}})

    def test_substituted_values_are_validated(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GETCERTS_STAGING", "yes")
        path = _write_yaml(tmp_path, {"acme": {"user_agent": "${GETCERTS_STAGING}"}})
        assert load_settings(path).acme.user_agent == "yes"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_all_schema_errors_are_collected(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            validate_schema(
                {
                    "acme": {"timeout_seconds": 0},
                    "renewal": {"min_days_left": -1},
                },
            )
        assert len(exc_info.value.errors) == 2

    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigValidationError, match="acme"):
            validate_schema({"acme": {"eab_kid": "x"}})

    def test_same_directory_urls_rejected(self):
        url = "https://acme.test/directory"
        with pytest.raises(ConfigValidationError, match="must differ"):
            additional_checks({"acme": {"directory_url": url, "staging_directory_url": url}})

    def test_non_http_url_rejected(self):
        with pytest.raises(ConfigValidationError, match="http"):
            additional_checks({"acme": {"directory_url": "ftp://acme.test/"}})

    def test_empty_reload_command_rejected(self):
        with pytest.raises(ConfigValidationError, match="reload_command"):
            additional_checks({"install": {"reload_command": []}})

    def test_small_rsa_key_rejected_by_schema(self):
        with pytest.raises(ConfigValidationError):
            validate_schema({"keys": {"rsa_key_size": 1024}})


# ---------------------------------------------------------------------------
# Overrides
# ---------------------------------------------------------------------------


class TestOverrides:
    def test_overrides_return_new_value(self):
        base = build_settings({})
        changed = base.with_overrides(staging=True, min_days_left=5)
        assert changed.acme.staging is True
        assert changed.renewal.min_days_left == 5
        assert base.acme.staging is False
        assert base.renewal.min_days_left == 30

    def test_none_keeps_values(self):
        base = build_settings({"acme": {"staging": True}})
        assert base.with_overrides() is base

    def test_settings_are_frozen(self):
        settings = build_settings({})
        with pytest.raises(AttributeError):
            settings.renewal.min_days_left = 1  # type: ignore[misc]
