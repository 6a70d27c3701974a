"""
RECON Configuration

Settings come from three layers, later ones winning:

    1. _DEFAULTS below (the shop runs without any settings file)
    2. config/settings.toml (stdlib tomllib)
    3. RECON_* environment variables

Billing values are checked after merging; a tax rate, payment window or
prefix that makes no sense is logged and replaced by its default rather
than producing wrong invoices.

Usage:
    from core.config import get_config

    config = get_config()
    config.billing.tax_rate          # 0.19
    config.store.path                # "data/db.json"
    config.reload()                  # {"billing.tax_rate": {"old": 0.19, "new": 0.16}}
"""

import copy
import logging
import os
import threading
import tomllib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger("recon.config")


_DEFAULTS: dict[str, Any] = {
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
        "log_level": "info",
    },
    "store": {
        "path": "data/db.json",
    },
    "billing": {
        "tax_rate": 0.19,
        "payment_window_days": 14,
        "invoice_prefix": "RE",
    },
    "company": {
        "name": "Auto-Anlage GmbH",
        "address": "Musterstrasse 1, 80331 Muenchen",
        "email": "rechnung@auto-anlage.de",
        "phone": "+49 89 000000",
    },
}

# env var → (dotted key, parser)
_ENV_OVERRIDES: dict[str, tuple[str, type]] = {
    "RECON_SERVER_HOST":         ("server.host", str),
    "RECON_SERVER_PORT":         ("server.port", int),
    "RECON_SERVER_LOG_LEVEL":    ("server.log_level", str),
    "RECON_DATA_FILE":           ("store.path", str),
    "RECON_TAX_RATE":            ("billing.tax_rate", float),
    "RECON_PAYMENT_WINDOW_DAYS": ("billing.payment_window_days", int),
    "RECON_INVOICE_PREFIX":      ("billing.invoice_prefix", str),
}

# dotted key → predicate the value must satisfy
_CHECKS = {
    "server.port": lambda v: isinstance(v, int) and 0 < v < 65536,
    "billing.tax_rate": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool) and 0 <= v <= 1,
    "billing.payment_window_days": lambda v: isinstance(v, int) and not isinstance(v, bool) and v > 0,
    "billing.invoice_prefix": lambda v: isinstance(v, str) and bool(v.strip()),
}


class Section:
    """Read-only attribute view over one settings table.

        Section("billing", {"tax_rate": 0.19}).tax_rate   # 0.19
    """

    def __init__(self, name: str, data: dict[str, Any]):
        self._name = name
        self._data = data

    def __getattr__(self, key: str) -> Any:
        if key.startswith("_"):
            raise AttributeError(key)
        if key not in self._data:
            raise AttributeError(f"[{self._name}] has no setting '{key}'")
        value = self._data[key]
        return Section(f"{self._name}.{key}", value) if isinstance(value, dict) else value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def __repr__(self) -> str:
        return f"Section({self._name!r}, {self._data!r})"


class ReconConfig:
    """Merged settings, exposed per table: config.billing, config.store, ...

    Args:
        config_path: settings file; defaults to <project root>/config/settings.toml.
    """

    SECTIONS = tuple(_DEFAULTS)

    def __init__(self, config_path: str | Path | None = None):
        if config_path is None:
            config_path = Path(__file__).resolve().parent.parent / "config" / "settings.toml"
        self.path = Path(config_path)
        self.last_loaded = ""
        self._lock = threading.Lock()
        self._data: dict[str, Any] = self._build()

    def __getattr__(self, name: str) -> Any:
        if name in self.SECTIONS:
            return Section(name, self._data[name])
        raise AttributeError(f"No settings table '{name}'; known: {', '.join(self.SECTIONS)}")

    def to_dict(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)

    def reload(self) -> dict[str, dict]:
        """Re-read file and environment. Returns {dotted key: {"old", "new"}}.

        The store path and company defaults are captured when the
        BillingService is built; changing them needs a restart.
        """
        with self._lock:
            before = _flatten(self._data)
            self._data = self._build()
            after = _flatten(self._data)
        changes = {
            key: {"old": before.get(key), "new": after.get(key)}
            for key in sorted(before.keys() | after.keys())
            if before.get(key) != after.get(key)
        }
        logger.info("Configuration reloaded (%d change(s))", len(changes))
        return changes

    # -------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------

    def _build(self) -> dict[str, Any]:
        data = copy.deepcopy(_DEFAULTS)
        _merge_into(data, self._read_file())
        self._apply_env(data)
        _enforce_checks(data)
        self.last_loaded = datetime.now(timezone.utc).isoformat()
        return data

    def _read_file(self) -> dict[str, Any]:
        if not self.path.exists():
            logger.warning("No settings file at %s, running on defaults", self.path)
            return {}
        try:
            with open(self.path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.warning("Ignoring unreadable settings file %s: %s", self.path, e)
            return {}
        logger.info("Settings loaded from %s", self.path)
        return data

    @staticmethod
    def _apply_env(data: dict[str, Any]):
        for var, (dotted, parse) in _ENV_OVERRIDES.items():
            raw = os.environ.get(var)
            if raw is None:
                continue
            try:
                value = parse(raw)
            except ValueError:
                logger.warning("Ignoring %s=%r: not a valid %s", var, raw, parse.__name__)
                continue
            table, key = dotted.split(".")
            data.setdefault(table, {})[key] = value
            logger.info("Setting %s taken from %s", dotted, var)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_instance: ReconConfig | None = None
_instance_lock = threading.Lock()


def get_config(config_path: str | Path | None = None) -> ReconConfig:
    """Process-wide ReconConfig. config_path only matters on the first call."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = ReconConfig(config_path)
        return _instance


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _merge_into(target: dict, overlay: dict):
    """Recursively overlay one settings tree onto another, in place."""
    for key, value in overlay.items():
        current = target.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _merge_into(current, value)
        else:
            target[key] = value


def _enforce_checks(data: dict):
    for table, defaults in _DEFAULTS.items():
        if not isinstance(data.get(table), dict):
            logger.warning("Settings table [%s] is not a table, using defaults", table)
            data[table] = copy.deepcopy(defaults)
    for dotted, ok in _CHECKS.items():
        table, key = dotted.split(".")
        value = data[table].get(key)
        if not ok(value):
            fallback = _DEFAULTS[table][key]
            logger.warning("Invalid setting %s=%r, using %r", dotted, value, fallback)
            data[table][key] = fallback


def _flatten(tree: dict, prefix: str = "") -> dict[str, Any]:
    """{"billing": {"tax_rate": 0.19}} → {"billing.tax_rate": 0.19}"""
    flat = {}
    for key, value in tree.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, dotted + "."))
        else:
            flat[dotted] = value
    return flat
