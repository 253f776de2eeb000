# settings.py
from __future__ import annotations
import os
from pathlib import Path

STATE_DIR = Path(os.environ.get("PIPELINER_HOME", "~/.pipeliner")).expanduser()
DAEMON_MODE_ENV = "PIPELINER_DAEMON_MODE"
LOG_LEVEL = os.environ.get("PIPELINER_LOG_LEVEL", "INFO")

DAEMON_START_ATTEMPTS = int(os.environ.get("PIPELINER_DAEMON_START_ATTEMPTS", "3"))
DAEMON_START_DELAY = float(os.environ.get("PIPELINER_DAEMON_START_DELAY", "0.8"))
DAEMON_STOP_GRACE = float(os.environ.get("PIPELINER_DAEMON_STOP_GRACE", "1.0"))

RETRY_BACKOFF_CAP = 10.0
PARALLEL_INDEX_STRIDE = 1000
