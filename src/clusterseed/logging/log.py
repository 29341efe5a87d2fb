# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/clusterseed/logging/log.py

from __future__ import annotations

import logging
from pathlib import Path
from datetime import datetime, timezone
import uuid

DEFAULT_LOG_DIR = Path("/var/log/clusterseed")


def _usable_dir(base_dir: Path) -> Path:
    """
    Fall back to ~/.clusterseed/logs when the system log dir cannot be created
    (e.g. a non-root dry run).
    """
    try:
        base_dir.mkdir(parents=True, exist_ok=True)
        return base_dir
    except PermissionError:
        fallback = Path.home() / ".clusterseed" / "logs"
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "clusterseed",
    verbose: bool = False,
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - timestamped per-run log file (full DEBUG trace)
      - console handler (INFO, or DEBUG when --debug is passed)
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())

    base_dir = _usable_dir(base_dir or DEFAULT_LOG_DIR)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = base_dir / f"{name}-{ts}-{run_id}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    for h in list(logger.handlers):
        h.close()
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info("=== clusterseed bootstrap started ===")
    logger.info(f"run_id={run_id}")
    logger.info(f"log_file={log_path}")

    return logger, run_id, log_path
