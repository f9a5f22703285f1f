"""
Layered configuration — resolved once at process start into a frozen snapshot.

Layers, lowest to highest precedence:

    1. DEFAULTS            — static table seeded before any document is read
    2. main.{yml,json}     — base document in the config directory
    3. <env>.{yml,json}    — environment overlay (skipped for "local")
    4. environment vars    — fixed ENV_BINDINGS, applied even when empty

Keys are matched case-insensitively and ignore "_" / "-", so "readTimeout",
"read_timeout" and "READ-TIMEOUT" address the same field. Durations accept
"10s", "1h30m", "720h", "250ms", numbers of seconds, or timedelta values.

There is no module-level settings object: call resolve() (or load_config())
once and pass the returned Config to whatever needs it.

Usage:
    from schoolhub.core.config import load_config

    config = load_config("configs")
    print(config.http.read_timeout)
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Annotated, Any, Dict, Mapping, Optional, Tuple, Type, Union

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from schoolhub.core.errors import ConfigError, ConfigErrorKind

logger = logging.getLogger(__name__)

LOCAL_ENVIRONMENT = "local"
PRODUCTION_ENVIRONMENT = "prod"

BASE_DOCUMENT = "main"
DOCUMENT_EXTENSIONS = (".yml", ".yaml", ".json")


# ═══════════════════════════════════════════════════════════════════════════
# Durations
# ═══════════════════════════════════════════════════════════════════════════

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_PLAIN_NUMBER = re.compile(r"\d+(?:\.\d*)?|\.\d+")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Any) -> Any:
    """
    Coerce a Go-style duration string or a number of seconds to timedelta.

    Anything else is passed through untouched so pydantic reports it.
    """
    if isinstance(value, timedelta) or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        return value

    text = value.strip()
    if not text:
        return timedelta(0)
    sign = -1 if text.startswith("-") else 1
    body = text.lstrip("+-")

    if _PLAIN_NUMBER.fullmatch(body):
        return timedelta(seconds=sign * float(body))

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(body):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(body):
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * total)


Duration = Annotated[timedelta, BeforeValidator(parse_duration)]


# ═══════════════════════════════════════════════════════════════════════════
# Snapshot sections
# ═══════════════════════════════════════════════════════════════════════════

class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", coerce_numbers_to_str=True)


class DatabaseConfig(_Section):
    uri: str = ""
    user: str = ""
    password: str = ""
    name: str = Field("", validation_alias="databaseName")


class HTTPConfig(_Section):
    host: str = ""
    port: str = ""
    read_timeout: Duration = timedelta(0)
    write_timeout: Duration = timedelta(0)
    max_header_megabytes: int = 0


class JWTConfig(_Section):
    access_token_ttl: Duration = timedelta(0)
    refresh_token_ttl: Duration = timedelta(0)
    signing_key: str = ""


class AuthConfig(_Section):
    jwt: JWTConfig = Field(default_factory=JWTConfig)
    password_salt: str = ""
    verification_code_length: int = 0


class FileStorageConfig(_Section):
    endpoint: str = ""
    bucket: str = ""
    access_key: str = ""
    secret_key: str = ""


class SendPulseConfig(_Section):
    list_id: str = ""
    client_id: str = ""
    client_secret: str = ""


class EmailTemplates(_Section):
    verification_email: str = ""
    purchase_successful: str = ""


class EmailConfig(_Section):
    sendpulse: SendPulseConfig = Field(default_factory=SendPulseConfig)
    templates: EmailTemplates = Field(default_factory=EmailTemplates)
    subjects: EmailTemplates = Field(default_factory=EmailTemplates)


class FondyConfig(_Section):
    merchant_id: str = ""
    merchant_password: str = ""


class PaymentConfig(_Section):
    fondy: FondyConfig = Field(default_factory=FondyConfig)
    callback_url: str = ""
    response_url: str = ""


class LimiterConfig(_Section):
    rps: int = 0
    burst: int = 0
    ttl: Duration = timedelta(0)


class CacheConfig(_Section):
    ttl: Duration = timedelta(0)
    redis_url: str = ""  # empty → in-process memory cache
    purge_interval: Duration = timedelta(0)  # memory backend sweep; 0 disables


class SMTPConfig(_Section):
    host: str = ""
    port: int = 0
    sender: str = Field("", validation_alias="from")
    password: str = ""


class CloudflareConfig(_Section):
    api_key: str = ""
    email: str = ""
    zone_email: str = ""
    cname_target: str = ""


class Config(_Section):
    """The resolved configuration snapshot. Frozen for the process lifetime."""

    environment: str = ""
    log_level: str = ""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    file_storage: FileStorageConfig = Field(default_factory=FileStorageConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    payment: PaymentConfig = Field(default_factory=PaymentConfig)
    limiter: LimiterConfig = Field(default_factory=LimiterConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    frontend_url: str = ""
    smtp: SMTPConfig = Field(default_factory=SMTPConfig)
    cloudflare: CloudflareConfig = Field(default_factory=CloudflareConfig)

    @property
    def is_production(self) -> bool:
        return self.environment == PRODUCTION_ENVIRONMENT

    @property
    def is_local(self) -> bool:
        return self.environment == LOCAL_ENVIRONMENT


# ═══════════════════════════════════════════════════════════════════════════
# Layer 1 — Default Table
# ═══════════════════════════════════════════════════════════════════════════

DEFAULTS: Dict[str, Any] = {
    "environment": LOCAL_ENVIRONMENT,
    "logLevel": "INFO",
    "http": {
        "port": "8000",
        "readTimeout": timedelta(seconds=10),
        "writeTimeout": timedelta(seconds=10),
        "maxHeaderMegabytes": 1,
    },
    "auth": {
        "jwt": {
            "accessTokenTTL": timedelta(minutes=15),
            "refreshTokenTTL": timedelta(days=30),
        },
        "verificationCodeLength": 8,
    },
    "limiter": {
        "rps": 10,
        "burst": 2,
        "ttl": timedelta(minutes=10),
    },
    "cache": {
        "ttl": timedelta(seconds=60),
        "purgeInterval": timedelta(minutes=5),
    },
}


# ═══════════════════════════════════════════════════════════════════════════
# Layer 4 — Environment Override Layer
# ═══════════════════════════════════════════════════════════════════════════

class EnvironmentOverrides(BaseSettings):
    """
    The recognised environment variables. A variable that is set (even to an
    empty string) ends up in model_fields_set and overrides its bound field.
    """

    model_config = SettingsConfigDict(case_sensitive=True, extra="ignore")

    # ── Data store ──
    DATABASE_URI: Optional[str] = None
    DATABASE_USER: Optional[str] = None
    DATABASE_PASSWORD: Optional[str] = None

    # ── Auth ──
    PASSWORD_SALT: Optional[str] = None
    JWT_SIGNING_KEY: Optional[str] = None

    # ── Email ──
    SENDPULSE_ID: Optional[str] = None
    SENDPULSE_SECRET: Optional[str] = None
    SENDPULSE_LISTID: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None

    # ── HTTP ──
    HTTP_HOST: Optional[str] = None
    FRONTEND_URL: Optional[str] = None

    # ── Payment ──
    FONDY_MERCHANT_ID: Optional[str] = None
    FONDY_MERCHANT_PASS: Optional[str] = None
    PAYMENT_CALLBACK_URL: Optional[str] = None
    PAYMENT_REDIRECT_URL: Optional[str] = None

    # ── Application ──
    APP_ENV: Optional[str] = None

    # ── Object storage ──
    STORAGE_ENDPOINT: Optional[str] = None
    STORAGE_ACCESS_KEY: Optional[str] = None
    STORAGE_SECRET_KEY: Optional[str] = None
    STORAGE_BUCKET: Optional[str] = None

    # ── Cloudflare ──
    CLOUDFLARE_API_KEY: Optional[str] = None
    CLOUDFLARE_EMAIL: Optional[str] = None
    CLOUDFLARE_ZONE_EMAIL: Optional[str] = None
    CLOUDFLARE_CNAME_TARGET: Optional[str] = None


ENV_BINDINGS: Dict[str, Tuple[str, ...]] = {
    "DATABASE_URI":            ("database", "uri"),
    "DATABASE_USER":           ("database", "user"),
    "DATABASE_PASSWORD":       ("database", "password"),
    "PASSWORD_SALT":           ("auth", "password_salt"),
    "JWT_SIGNING_KEY":         ("auth", "jwt", "signing_key"),
    "SENDPULSE_ID":            ("email", "sendpulse", "client_id"),
    "SENDPULSE_SECRET":        ("email", "sendpulse", "client_secret"),
    "SENDPULSE_LISTID":        ("email", "sendpulse", "list_id"),
    "SMTP_PASSWORD":           ("smtp", "password"),
    "HTTP_HOST":               ("http", "host"),
    "FRONTEND_URL":            ("frontend_url",),
    "FONDY_MERCHANT_ID":       ("payment", "fondy", "merchant_id"),
    "FONDY_MERCHANT_PASS":     ("payment", "fondy", "merchant_password"),
    "PAYMENT_CALLBACK_URL":    ("payment", "callback_url"),
    "PAYMENT_REDIRECT_URL":    ("payment", "response_url"),
    "APP_ENV":                 ("environment",),
    "STORAGE_ENDPOINT":        ("file_storage", "endpoint"),
    "STORAGE_ACCESS_KEY":      ("file_storage", "access_key"),
    "STORAGE_SECRET_KEY":      ("file_storage", "secret_key"),
    "STORAGE_BUCKET":          ("file_storage", "bucket"),
    "CLOUDFLARE_API_KEY":      ("cloudflare", "api_key"),
    "CLOUDFLARE_EMAIL":        ("cloudflare", "email"),
    "CLOUDFLARE_ZONE_EMAIL":   ("cloudflare", "zone_email"),
    "CLOUDFLARE_CNAME_TARGET": ("cloudflare", "cname_target"),
}


def read_environment_overrides() -> Dict[Tuple[str, ...], str]:
    """Return {field path: value} for every bound variable that is set."""
    overrides = EnvironmentOverrides()
    return {
        ENV_BINDINGS[name]: getattr(overrides, name)
        for name in sorted(overrides.model_fields_set)
        if name in ENV_BINDINGS
    }


# ═══════════════════════════════════════════════════════════════════════════
# Working document helpers
# ═══════════════════════════════════════════════════════════════════════════

def _norm(key: Any) -> str:
    return str(key).replace("_", "").replace("-", "").lower()


def _normalise(data: Mapping[Any, Any]) -> Dict[str, Any]:
    """Normalise keys and drop null values so they fall through to lower layers."""
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        out[_norm(key)] = _normalise(value) if isinstance(value, Mapping) else value
    return out


def _deep_merge(base: Dict[str, Any], layer: Mapping[str, Any]) -> None:
    """Merge `layer` into `base` in place. Layer values win; nested maps merge."""
    for key, value in layer.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _deep_merge(current, value)
        else:
            base[key] = copy.deepcopy(value)


def _set_path(document: Dict[str, Any], path: Tuple[str, ...], value: Any) -> None:
    node = document
    for segment in path[:-1]:
        key = _norm(segment)
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[_norm(path[-1])] = value


def _rekey(model_cls: Type[BaseModel], document: Mapping[str, Any]) -> Dict[str, Any]:
    """Map a normalised document onto the model's field names / aliases."""
    out: Dict[str, Any] = {}
    for name, field in model_cls.model_fields.items():
        alias = field.validation_alias if isinstance(field.validation_alias, str) else None
        target = alias or name
        candidates = [_norm(name)] + ([_norm(alias)] if alias else [])
        for candidate in candidates:
            if candidate in document:
                value = document[candidate]
                sub = field.annotation
                if (
                    isinstance(value, Mapping)
                    and isinstance(sub, type)
                    and issubclass(sub, BaseModel)
                ):
                    value = _rekey(sub, value)
                out[target] = value
                break
    return out


def _find_document(source_dir: Path, name: str) -> Optional[Path]:
    for ext in DOCUMENT_EXTENSIONS:
        candidate = source_dir / f"{name}{ext}"
        if candidate.is_file():
            return candidate
    return None


def _read_document(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        if path.suffix == ".json":
            data = json.load(fh)
        else:
            data = yaml.safe_load(fh)
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError("top-level value must be a mapping")
    return _normalise(data)


def _load_layer(
    source_dir: Path, name: str, kind: ConfigErrorKind
) -> Tuple[Path, Dict[str, Any]]:
    path = _find_document(source_dir, name)
    if path is None:
        raise ConfigError(
            kind,
            f"Config document '{name}' not found in {source_dir}",
            directory=str(source_dir),
            document=name,
        )
    try:
        return path, _read_document(path)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(
            kind,
            f"Config document {path} could not be read: {e}",
            path=str(path),
        ) from e


# ═══════════════════════════════════════════════════════════════════════════
# Resolution
# ═══════════════════════════════════════════════════════════════════════════

def resolve(source_dir: Union[str, os.PathLike], environment: str) -> Config:
    """
    Resolve the configuration snapshot.

    Raises
    ------
    ConfigError
        SOURCE_UNREADABLE  — base document missing or unparsable
        OVERLAY_UNREADABLE — overlay for a non-local environment missing or unparsable
        PARSE_ERROR        — merged values do not fit the snapshot types
    """
    directory = Path(source_dir)

    # 1. defaults
    document = _normalise(DEFAULTS)
    _set_path(document, ("environment",), environment)

    # 2. base document
    base_path, base = _load_layer(directory, BASE_DOCUMENT, ConfigErrorKind.SOURCE_UNREADABLE)
    _deep_merge(document, base)
    layers = [str(base_path)]

    # 3./4. overlay
    if environment != LOCAL_ENVIRONMENT:
        if not environment or Path(environment).name != environment:
            raise ConfigError(
                ConfigErrorKind.OVERLAY_UNREADABLE,
                f"Invalid environment name {environment!r}",
                environment=environment,
            )
        overlay_path, overlay = _load_layer(
            directory, environment, ConfigErrorKind.OVERLAY_UNREADABLE
        )
        _deep_merge(document, overlay)
        layers.append(str(overlay_path))

    # 5. environment variables
    overrides = read_environment_overrides()
    for path, value in overrides.items():
        _set_path(document, path, value)

    # 6. snapshot
    try:
        config = Config.model_validate(_rekey(Config, document))
    except PydanticValidationError as e:
        raise ConfigError(
            ConfigErrorKind.PARSE_ERROR,
            f"Invalid configuration: {e.error_count()} error(s)",
            errors=[
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ],
        ) from e

    logger.info(
        "Configuration resolved [env=%s, documents=%s, env_overrides=%d]",
        environment, layers, len(overrides),
    )
    return config


def load_config(source_dir: Union[str, os.PathLike] = "configs") -> Config:
    """Process-start entry point: environment name from APP_ENV, default 'local'."""
    environment = EnvironmentOverrides().APP_ENV or LOCAL_ENVIRONMENT
    return resolve(source_dir, environment)
