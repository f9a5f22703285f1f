"""
Tests for the layered configuration resolver.

Covers:
    • Default Table values and native duration units
    • Layer precedence for every combination of layers
    • "local" never reads an overlay
    • Environment variables: set-but-empty overrides, unset leaves alone
    • Key normalisation, aliases, JSON documents
    • Error taxonomy (source / overlay / parse)
    • Snapshot immutability
"""

from __future__ import annotations

import itertools
import json
from datetime import timedelta
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError as PydanticValidationError

from schoolhub.core.config import (
    DEFAULTS,
    ENV_BINDINGS,
    Config,
    EnvironmentOverrides,
    load_config,
    parse_duration,
    resolve,
)
from schoolhub.core.errors import ConfigError, ConfigErrorKind

CONFIG_DIR = Path(__file__).resolve().parent.parent / "configs"


def _write(directory, name, data) -> None:
    (directory / name).write_text(yaml.safe_dump(data), encoding="utf-8")


# ═══════════════════════════════════════════════════════════════════════════
# Durations
# ═══════════════════════════════════════════════════════════════════════════

class TestParseDuration:
    @pytest.mark.parametrize("text, expected", [
        ("10s", timedelta(seconds=10)),
        ("15m", timedelta(minutes=15)),
        ("720h", timedelta(days=30)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("250ms", timedelta(milliseconds=250)),
        ("1.5h", timedelta(minutes=90)),
        ("0", timedelta(0)),
        ("90", timedelta(seconds=90)),
        ("-5s", timedelta(seconds=-5)),
    ])
    def test_strings(self, text, expected):
        assert parse_duration(text) == expected

    def test_numbers_are_seconds(self):
        assert parse_duration(60) == timedelta(minutes=1)
        assert parse_duration(0.5) == timedelta(milliseconds=500)

    def test_timedelta_passthrough(self):
        td = timedelta(hours=3)
        assert parse_duration(td) is td

    @pytest.mark.parametrize("text", ["ten seconds", "10x", "h", "10s garbage", "1h 30m"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


# ═══════════════════════════════════════════════════════════════════════════
# Defaults
# ═══════════════════════════════════════════════════════════════════════════

class TestDefaults:
    def test_empty_base_document_yields_defaults(self, tmp_path):
        (tmp_path / "main.yml").write_text("", encoding="utf-8")
        config = resolve(tmp_path, "local")

        assert config.environment == "local"
        assert config.log_level == "INFO"
        assert config.http.port == "8000"
        assert config.http.read_timeout == timedelta(seconds=10)
        assert config.http.write_timeout == timedelta(seconds=10)
        assert config.http.max_header_megabytes == 1
        assert config.auth.jwt.access_token_ttl == timedelta(minutes=15)
        assert config.auth.jwt.refresh_token_ttl == timedelta(days=30)
        assert config.auth.verification_code_length == 8
        assert config.limiter.rps == 10
        assert config.limiter.burst == 2
        assert config.limiter.ttl == timedelta(minutes=10)
        assert config.cache.ttl == timedelta(seconds=60)
        assert config.cache.purge_interval == timedelta(minutes=5)

    def test_duration_defaults_are_native_timedeltas(self):
        assert isinstance(DEFAULTS["http"]["readTimeout"], timedelta)
        assert isinstance(DEFAULTS["auth"]["jwt"]["accessTokenTTL"], timedelta)
        assert isinstance(DEFAULTS["limiter"]["ttl"], timedelta)

    def test_unset_fields_are_zero_values(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        config = resolve(tmp_path, "local")

        assert config.database.uri == ""
        assert config.http.host == ""
        assert config.smtp.port == 0
        assert config.payment.fondy.merchant_id == ""
        assert config.cloudflare.cname_target == ""

    def test_environment_argument_recorded(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        _write(tmp_path, "staging.yml", {})
        assert resolve(tmp_path, "staging").environment == "staging"


# ═══════════════════════════════════════════════════════════════════════════
# Precedence
# ═══════════════════════════════════════════════════════════════════════════

LAYERS = ("default", "base", "overlay", "env")

_LAYER_SUBSETS = [
    combo
    for n in range(0, len(LAYERS) + 1)
    for combo in itertools.combinations(LAYERS, n)
]


class TestPrecedence:
    """http.host is reachable from all four layers; highest present wins."""

    def _resolve_with(self, tmp_path, monkeypatch, present) -> str:
        if "default" in present:
            monkeypatch.setitem(DEFAULTS["http"], "host", "from-default")
        _write(tmp_path, "main.yml",
               {"http": {"host": "from-base"}} if "base" in present else {})
        _write(tmp_path, "staging.yml",
               {"http": {"host": "from-overlay"}} if "overlay" in present else {})
        if "env" in present:
            monkeypatch.setenv("HTTP_HOST", "from-env")
        return resolve(tmp_path, "staging").http.host

    @pytest.mark.parametrize(
        "present", _LAYER_SUBSETS, ids=lambda c: "+".join(c) or "none",
    )
    def test_highest_layer_wins(self, tmp_path, monkeypatch, present):
        expected = f"from-{present[-1]}" if present else ""
        assert self._resolve_with(tmp_path, monkeypatch, present) == expected

    def test_overlay_keeps_keys_it_does_not_mention(self, tmp_path):
        _write(tmp_path, "main.yml", {"http": {"port": 9000, "readTimeout": "20s"}})
        _write(tmp_path, "staging.yml", {"http": {"readTimeout": "45s"}})
        config = resolve(tmp_path, "staging")

        assert config.http.port == "9000"
        assert config.http.read_timeout == timedelta(seconds=45)
        assert config.http.write_timeout == timedelta(seconds=10)

    def test_empty_overlay_section_keeps_lower_layers(self, tmp_path):
        _write(tmp_path, "main.yml", {"http": {"readTimeout": "20s"}})
        (tmp_path / "staging.yml").write_text("http:\n", encoding="utf-8")
        config = resolve(tmp_path, "staging")

        assert config.http.read_timeout == timedelta(seconds=20)
        assert config.http.port == "8000"

    def test_null_leaf_falls_through_to_default(self, tmp_path):
        (tmp_path / "main.yml").write_text(
            "http:\n  readTimeout:\n  port: 9000\n", encoding="utf-8",
        )
        config = resolve(tmp_path, "local")

        assert config.http.read_timeout == timedelta(seconds=10)
        assert config.http.port == "9000"

    def test_base_overrides_single_default_leaf(self, tmp_path):
        _write(tmp_path, "main.yml", {"auth": {"jwt": {"accessTokenTTL": "2h"}}})
        config = resolve(tmp_path, "local")

        assert config.auth.jwt.access_token_ttl == timedelta(hours=2)
        assert config.auth.jwt.refresh_token_ttl == timedelta(days=30)

    def test_env_var_beats_overlay_for_environment(self, tmp_path, monkeypatch):
        _write(tmp_path, "main.yml", {"environment": "from-base"})
        _write(tmp_path, "staging.yml", {"environment": "from-overlay"})
        monkeypatch.setenv("APP_ENV", "staging")

        assert resolve(tmp_path, "staging").environment == "staging"


# ═══════════════════════════════════════════════════════════════════════════
# Local environment
# ═══════════════════════════════════════════════════════════════════════════

class TestLocalEnvironment:
    def test_overlay_never_read_for_local(self, tmp_path):
        _write(tmp_path, "main.yml", {"frontendUrl": "http://base"})
        _write(tmp_path, "local.yml", {"frontendUrl": "http://local-overlay"})
        _write(tmp_path, "prod.yml", {"frontendUrl": "http://prod"})

        config = resolve(tmp_path, "local")

        assert config.frontend_url == "http://base"

    def test_local_without_overlay_file_is_fine(self, tmp_path):
        _write(tmp_path, "main.yml", {"frontendUrl": "http://base"})
        assert resolve(tmp_path, "local").frontend_url == "http://base"

    def test_unparsable_overlay_ignored_for_local(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        (tmp_path / "local.yml").write_text("{{{ not yaml", encoding="utf-8")
        assert resolve(tmp_path, "local").is_local


# ═══════════════════════════════════════════════════════════════════════════
# Environment override layer
# ═══════════════════════════════════════════════════════════════════════════

class TestEnvironmentOverrides:
    def test_bindings_match_declared_variables(self):
        assert set(ENV_BINDINGS) == set(EnvironmentOverrides.model_fields)

    def test_every_binding_reaches_its_field(self, tmp_path, monkeypatch):
        _write(tmp_path, "main.yml", {})
        for name in ENV_BINDINGS:
            monkeypatch.setenv(name, f"v-{name}")
        monkeypatch.setenv("APP_ENV", "local")

        config = resolve(tmp_path, "local")

        for name, path in ENV_BINDINGS.items():
            value = config
            for segment in path:
                value = getattr(value, segment)
            expected = "local" if name == "APP_ENV" else f"v-{name}"
            assert value == expected, name

    def test_empty_string_still_overrides(self, tmp_path, monkeypatch):
        _write(tmp_path, "main.yml", {"frontendUrl": "http://base"})
        monkeypatch.setenv("FRONTEND_URL", "")

        assert resolve(tmp_path, "local").frontend_url == ""

    def test_unset_variable_leaves_file_value(self, tmp_path):
        _write(tmp_path, "main.yml", {"payment": {"callbackUrl": "http://cb"}})
        assert resolve(tmp_path, "local").payment.callback_url == "http://cb"

    def test_credentials_come_from_environment(self, tmp_path, monkeypatch):
        _write(tmp_path, "main.yml", {"database": {"databaseName": "schoolhub"}})
        monkeypatch.setenv("DATABASE_URI", "postgresql+asyncpg://db:5432")
        monkeypatch.setenv("DATABASE_USER", "app")
        monkeypatch.setenv("DATABASE_PASSWORD", "s3cret")

        db = resolve(tmp_path, "local").database

        assert (db.uri, db.user, db.password, db.name) == (
            "postgresql+asyncpg://db:5432", "app", "s3cret", "schoolhub",
        )

    def test_load_config_reads_app_env(self, tmp_path, monkeypatch):
        _write(tmp_path, "main.yml", {"logLevel": "INFO"})
        _write(tmp_path, "staging.yml", {"logLevel": "DEBUG"})
        monkeypatch.setenv("APP_ENV", "staging")

        config = load_config(tmp_path)

        assert config.environment == "staging"
        assert config.log_level == "DEBUG"

    def test_load_config_defaults_to_local(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        _write(tmp_path, "prod.yml", {"logLevel": "ERROR"})

        config = load_config(tmp_path)

        assert config.environment == "local"
        assert config.log_level == "INFO"


# ═══════════════════════════════════════════════════════════════════════════
# Document format
# ═══════════════════════════════════════════════════════════════════════════

class TestDocumentFormat:
    def test_keys_match_regardless_of_case_and_separators(self, tmp_path):
        _write(tmp_path, "main.yml", {
            "HTTP": {"READ_TIMEOUT": "3s", "write-timeout": "4s"},
            "file_storage": {"Bucket": "media"},
        })
        config = resolve(tmp_path, "local")

        assert config.http.read_timeout == timedelta(seconds=3)
        assert config.http.write_timeout == timedelta(seconds=4)
        assert config.file_storage.bucket == "media"

    def test_aliased_keys(self, tmp_path):
        _write(tmp_path, "main.yml", {
            "smtp": {"host": "mail", "port": 587, "from": "noreply@x.com"},
            "database": {"databaseName": "schools"},
        })
        config = resolve(tmp_path, "local")

        assert config.smtp.sender == "noreply@x.com"
        assert config.smtp.port == 587
        assert config.database.name == "schools"

    def test_json_documents(self, tmp_path):
        (tmp_path / "main.json").write_text(
            json.dumps({"limiter": {"rps": 50}}), encoding="utf-8",
        )
        (tmp_path / "staging.json").write_text(
            json.dumps({"limiter": {"burst": 7}}), encoding="utf-8",
        )
        config = resolve(tmp_path, "staging")

        assert config.limiter.rps == 50
        assert config.limiter.burst == 7

    def test_repository_sample_configs_resolve(self):
        config = resolve(CONFIG_DIR, "prod")

        assert config.is_production
        assert config.cache.ttl == timedelta(minutes=5)
        assert config.auth.jwt.refresh_token_ttl == timedelta(hours=720)


# ═══════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════

class TestErrors:
    def test_missing_base_document(self, tmp_path):
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path, "local")
        assert exc.value.kind is ConfigErrorKind.SOURCE_UNREADABLE

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path / "nope", "local")
        assert exc.value.kind is ConfigErrorKind.SOURCE_UNREADABLE

    def test_unparsable_base_document(self, tmp_path):
        (tmp_path / "main.yml").write_text("http: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path, "local")
        assert exc.value.kind is ConfigErrorKind.SOURCE_UNREADABLE

    def test_base_document_must_be_a_mapping(self, tmp_path):
        (tmp_path / "main.yml").write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path, "local")
        assert exc.value.kind is ConfigErrorKind.SOURCE_UNREADABLE

    def test_missing_overlay(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path, "staging")
        assert exc.value.kind is ConfigErrorKind.OVERLAY_UNREADABLE

    def test_unparsable_overlay(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        (tmp_path / "staging.yml").write_text("a: [b", encoding="utf-8")
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path, "staging")
        assert exc.value.kind is ConfigErrorKind.OVERLAY_UNREADABLE

    def test_environment_name_cannot_escape_directory(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path, "../main")
        assert exc.value.kind is ConfigErrorKind.OVERLAY_UNREADABLE

    def test_bad_duration_is_parse_error(self, tmp_path):
        _write(tmp_path, "main.yml", {"http": {"readTimeout": "soon"}})
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path, "local")
        assert exc.value.kind is ConfigErrorKind.PARSE_ERROR
        assert exc.value.details["errors"][0]["loc"].startswith("http")

    def test_bad_integer_is_parse_error(self, tmp_path):
        _write(tmp_path, "main.yml", {"limiter": {"rps": "lots"}})
        with pytest.raises(ConfigError) as exc:
            resolve(tmp_path, "local")
        assert exc.value.kind is ConfigErrorKind.PARSE_ERROR


# ═══════════════════════════════════════════════════════════════════════════
# Snapshot
# ═══════════════════════════════════════════════════════════════════════════

class TestSnapshot:
    def test_top_level_is_frozen(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        config = resolve(tmp_path, "local")
        with pytest.raises(PydanticValidationError):
            config.frontend_url = "http://changed"

    def test_sections_are_frozen(self, tmp_path):
        _write(tmp_path, "main.yml", {})
        config = resolve(tmp_path, "local")
        with pytest.raises(PydanticValidationError):
            config.http.host = "changed"

    def test_resolutions_are_independent(self, tmp_path, monkeypatch):
        _write(tmp_path, "main.yml", {"frontendUrl": "http://one"})
        first = resolve(tmp_path, "local")
        _write(tmp_path, "main.yml", {"frontendUrl": "http://two"})
        second = resolve(tmp_path, "local")

        assert first.frontend_url == "http://one"
        assert second.frontend_url == "http://two"

    def test_defaults_table_not_mutated_by_resolution(self, tmp_path):
        before = json.dumps(DEFAULTS, default=str, sort_keys=True)
        _write(tmp_path, "main.yml", {"http": {"port": 1}})
        resolve(tmp_path, "local")
        assert json.dumps(DEFAULTS, default=str, sort_keys=True) == before

    def test_direct_construction_has_zero_values(self):
        config = Config()
        assert config.http.read_timeout == timedelta(0)
        assert config.environment == ""
