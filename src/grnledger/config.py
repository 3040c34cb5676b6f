from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys

from grnledger.domain.errors import ValidationError
from grnledger.domain.models import CostPolicy, Language


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class LedgerSettings:
    default_cost_policy: CostPolicy = CostPolicy.LATEST
    label_language: Language = Language.EN
    kg_decimals: int = 3
    busy_timeout: float = 5.0


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "GrnLedger") -> AppPaths:
    override = os.environ.get("GRNLEDGER_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "ledger.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)


def get_settings(environ: dict[str, str] | None = None) -> LedgerSettings:
    env = os.environ if environ is None else environ
    defaults = LedgerSettings()

    try:
        policy = CostPolicy(env.get("GRNLEDGER_COST_POLICY", defaults.default_cost_policy.value).strip().lower())
        language = Language(env.get("GRNLEDGER_LABEL_LANGUAGE", defaults.label_language.value).strip().upper())
        kg_decimals = int(env.get("GRNLEDGER_KG_DECIMALS", defaults.kg_decimals))
        busy_timeout = float(env.get("GRNLEDGER_BUSY_TIMEOUT", defaults.busy_timeout))
    except ValueError as e:
        raise ValidationError(f"Invalid ledger setting: {e}") from e

    if kg_decimals < 0:
        raise ValidationError("GRNLEDGER_KG_DECIMALS must be >= 0.")
    if busy_timeout <= 0:
        raise ValidationError("GRNLEDGER_BUSY_TIMEOUT must be > 0.")

    return LedgerSettings(
        default_cost_policy=policy,
        label_language=language,
        kg_decimals=kg_decimals,
        busy_timeout=busy_timeout,
    )
