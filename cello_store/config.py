"""
Load store config from config.yaml with optional env overrides.
Single source of truth for backend selection and connection parameters.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

BACKENDS = ("sql", "dynamodb")

# Defaults if no YAML or env
_DEFAULTS: Dict[str, Any] = {
    "backend": "sql",
    "sql": {
        "url": "sqlite:///cello.sqlite",
        "host": "",
        "database": "",
        "user": "",
        "password": "",
        "options": {},
        "create_schema": False,
    },
    "dynamodb": {
        "table": "cello",
        "region": "us-east-1",
        "endpoint_url": "",
        "health_check": False,
        "connect_timeout_s": 5.0,
        "read_timeout_s": 10.0,
    },
}


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_options(raw: str) -> Dict[str, str]:
    """'sslmode=disable,connect_timeout=5' -> {'sslmode': 'disable', 'connect_timeout': '5'}"""
    options: Dict[str, str] = {}
    for part in raw.split(","):
        if "=" not in part:
            continue
        k, v = part.split("=", 1)
        if k.strip():
            options[k.strip()] = v.strip()
    return options


def _config_yaml_path() -> Path:
    """config.yaml lives at repo root (parent of package dir) unless CELLO_STORE_CONFIG points elsewhere."""
    override = os.environ.get("CELLO_STORE_CONFIG", "").strip()
    if override:
        return Path(override)
    return Path(__file__).resolve().parent.parent / "config.yaml"


def _load_yaml() -> dict:
    config_path = _config_yaml_path()
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def _deep_merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _env_overrides() -> dict:
    overrides: dict = {}
    backend = os.environ.get("CELLO_STORE_BACKEND")
    if backend:
        overrides["backend"] = backend.strip().lower()

    sql_env = {
        "url": "CELLO_DB_URL",
        "host": "CELLO_DB_HOST",
        "database": "CELLO_DB_NAME",
        "user": "CELLO_DB_USER",
        "password": "CELLO_DB_PASSWORD",
    }
    for key, env_name in sql_env.items():
        value = os.environ.get(env_name)
        if value is not None:
            overrides.setdefault("sql", {})[key] = value
    # Discrete host settings win over the default sqlite URL.
    if os.environ.get("CELLO_DB_HOST") and not os.environ.get("CELLO_DB_URL"):
        overrides.setdefault("sql", {})["url"] = ""
    options = os.environ.get("CELLO_DB_OPTIONS")
    if options:
        overrides.setdefault("sql", {})["options"] = _parse_options(options)

    table = os.environ.get("CELLO_DYNAMODB_TABLE")
    if table:
        overrides.setdefault("dynamodb", {})["table"] = table
    endpoint = os.environ.get("CELLO_DYNAMODB_ENDPOINT")
    if endpoint:
        overrides.setdefault("dynamodb", {})["endpoint_url"] = endpoint
    region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")
    if region:
        overrides.setdefault("dynamodb", {})["region"] = region
    health = os.environ.get("CELLO_DYNAMODB_HEALTH_CHECK")
    if health is not None:
        overrides.setdefault("dynamodb", {})["health_check"] = _as_bool(health)
    return overrides


def get_config() -> dict:
    """Return merged config: defaults <- config.yaml <- env."""
    merged = _deep_merge(_DEFAULTS, _load_yaml())
    merged = _deep_merge(merged, _env_overrides())
    return merged


@dataclass(frozen=True)
class SQLSettings:
    url: str = ""
    host: str = ""
    database: str = ""
    user: str = ""
    password: str = field(default="", repr=False)
    options: Mapping[str, str] = field(default_factory=dict)
    create_schema: bool = False


@dataclass(frozen=True)
class DynamoDBSettings:
    table: str = "cello"
    region: str = ""
    endpoint_url: str = ""
    health_check: bool = False
    connect_timeout_s: float = 5.0
    read_timeout_s: float = 10.0


@dataclass(frozen=True)
class StoreConfig:
    backend: str = "sql"
    sql: SQLSettings = field(default_factory=SQLSettings)
    dynamodb: DynamoDBSettings = field(default_factory=DynamoDBSettings)

    @staticmethod
    def from_mapping(data: Mapping[str, Any]) -> "StoreConfig":
        backend = str(data.get("backend") or "sql").strip().lower()
        if backend not in BACKENDS:
            raise ValueError(f"backend must be one of {', '.join(BACKENDS)} (got {backend!r})")
        sql = dict(data.get("sql") or {})
        ddb = dict(data.get("dynamodb") or {})
        if backend == "sql" and not (sql.get("url") or sql.get("host")):
            raise ValueError("sql backend needs sql.url or sql.host")
        if backend == "dynamodb" and not ddb.get("table"):
            raise ValueError("dynamodb backend needs dynamodb.table")
        return StoreConfig(
            backend=backend,
            sql=SQLSettings(
                url=str(sql.get("url") or ""),
                host=str(sql.get("host") or ""),
                database=str(sql.get("database") or ""),
                user=str(sql.get("user") or ""),
                password=str(sql.get("password") or ""),
                options={str(k): str(v) for k, v in (sql.get("options") or {}).items()},
                create_schema=_as_bool(sql.get("create_schema")),
            ),
            dynamodb=DynamoDBSettings(
                table=str(ddb.get("table") or ""),
                region=str(ddb.get("region") or ""),
                endpoint_url=str(ddb.get("endpoint_url") or ""),
                health_check=_as_bool(ddb.get("health_check")),
                connect_timeout_s=float(ddb.get("connect_timeout_s") or 5.0),
                read_timeout_s=float(ddb.get("read_timeout_s") or 10.0),
            ),
        )


def load_store_config() -> StoreConfig:
    return StoreConfig.from_mapping(get_config())
