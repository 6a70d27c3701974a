#!/usr/bin/env python3
"""RECON Launcher — entry point for the billing API server.

Thin wrapper around interfaces/api/server.py that adds:
- Logging setup
- Data directory verification
- Pre-flight checks (warn-only, never block startup)
- Signal handling for graceful shutdown

Run directly:
    python3 recon_launcher.py
"""

import logging
import os
import signal
import time
from pathlib import Path

# Record boot start time before any heavy imports
BOOT_START = time.monotonic()

logger = logging.getLogger("recon.launcher")


def setup_logging(level: str = "info"):
    """Configure root logger for startup messages."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def ensure_data_dirs(config):
    """Create the directory holding the data file if it doesn't exist."""
    data_dir = Path(config.store.path).parent
    data_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Data directory verified: %s", data_dir)


def run_preflight(config):
    """Quick pre-flight checks. Warn on failure, never block startup."""
    checks = []

    for section in ["server", "store", "billing", "company"]:
        checks.append(("config." + section, hasattr(config, section)))

    data_dir = Path(config.store.path).parent
    checks.append((f"dir:{data_dir}", data_dir.exists() and os.access(data_dir, os.W_OK)))
    checks.append(("billing.tax_rate", 0 <= config.billing.tax_rate <= 1))
    checks.append(("billing.payment_window_days", config.billing.payment_window_days > 0))

    passed = sum(1 for _, ok in checks if ok)
    logger.info("Pre-flight: %d/%d checks passed", passed, len(checks))
    for name, ok in checks:
        if not ok:
            logger.warning("Pre-flight FAILED: %s", name)


def install_signal_handlers():
    """Install SIGTERM/SIGINT handlers for graceful shutdown."""
    def handle_signal(signum, frame):
        logger.info("Received %s — shutting down", signal.Signals(signum).name)
        # uvicorn turns this into a lifespan shutdown
        raise SystemExit(0)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)


def main():
    """Entry point — runs the boot sequence then starts uvicorn."""
    from core.config import get_config
    config = get_config()

    setup_logging(config.server.log_level)
    logger.info("=" * 60)
    logger.info("RECON Launcher starting")
    logger.info("=" * 60)

    ensure_data_dirs(config)
    run_preflight(config)
    install_signal_handlers()

    import uvicorn
    logger.info("Starting uvicorn on %s:%d (boot took %.2fs)",
                config.server.host, config.server.port, time.monotonic() - BOOT_START)
    uvicorn.run(
        "interfaces.api.server:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level,
        access_log=False,
    )


if __name__ == "__main__":
    main()
