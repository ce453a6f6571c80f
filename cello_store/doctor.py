"""
Store doctor: preflight checks for config, driver dependencies, and backend health.
Run: python -m cello_store.doctor
Exit: 0 all OK, 2 config/deps, 3 backend unreachable.
"""
from __future__ import annotations

import argparse
import logging
from typing import List, Optional

import yaml

from .config import StoreConfig, load_store_config
from .core.context import CallContext
from .core.errors import StoreError

logger = logging.getLogger(__name__)

DEPENDENCIES = {
    "sql": ["sqlalchemy", "yaml"],
    "dynamodb": ["boto3", "botocore", "yaml"],
}


def check_config() -> Optional[StoreConfig]:
    """Return the parsed config, or None after printing what is wrong."""
    try:
        config = load_store_config()
    except (ValueError, OSError, yaml.YAMLError) as exc:
        print(f"[FAIL] config  {exc}")
        print("  Fix: set CELLO_STORE_BACKEND and CELLO_DB_URL / CELLO_DYNAMODB_TABLE, or edit config.yaml")
        return None
    target = config.dynamodb.table if config.backend == "dynamodb" else (config.sql.host or config.sql.url.split("@")[-1])
    print(f"[OK] config  backend={config.backend}  target={target}")
    return config


def check_dependencies(backend: str) -> bool:
    missing = []
    for pkg in DEPENDENCIES.get(backend, []):
        try:
            __import__(pkg)
        except ImportError:
            missing.append(pkg)
    if not missing:
        print("[OK] dependencies  " + " ".join(DEPENDENCIES.get(backend, [])))
        return True
    print("[FAIL] Missing packages: " + ", ".join(missing))
    print("  Fix: python -m pip install -e .")
    return False


def check_health(config: StoreConfig, timeout_s: float) -> bool:
    from .store.backend import build_store

    try:
        store = build_store(config)
        store.health(CallContext.with_timeout(timeout_s))
    except StoreError as exc:
        logger.warning("Store health check failed: %s", exc)
        print(f"[FAIL] health  {exc}")
        return False
    print(f"[OK] health  {config.backend}")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Preflight checks for the configured store backend.")
    parser.add_argument("--timeout", type=float, default=5.0, help="Health check deadline in seconds")
    args = parser.parse_args(argv)

    config = check_config()
    if config is None or not check_dependencies(config.backend):
        return 2
    if not check_health(config, args.timeout):
        return 3
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
