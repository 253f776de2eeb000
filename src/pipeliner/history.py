# history.py
"""Step recording and the JSON history sink."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class StepRecord:
    step: Dict[str, Any]
    context: Dict[str, Any]
    output: Dict[str, Any]
    duration: float
    status: str  # success | failure
    started_at: float = 0.0
    resolved_command: Optional[str] = None
    choice_value: Optional[str] = None
    prompt_value: Optional[str] = None


@dataclass
class History:
    initial_timestamp: float
    records: List[StepRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initialTimestamp": self.initial_timestamp,
            "records": [
                {k: v for k, v in asdict(r).items() if v is not None}
                for r in self.records
            ],
        }


class Recorder:
    """Thread-safe collector; parallel branches record concurrently."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._history = History(initial_timestamp=time.time())

    def record(self, record: StepRecord) -> None:
        with self._lock:
            self._history.records.append(record)

    def history(self) -> History:
        with self._lock:
            return History(self._history.initial_timestamp, list(self._history.records))

    def reset(self) -> None:
        with self._lock:
            self._history = History(initial_timestamp=time.time())


class HistoryStore:
    def __init__(self, root: Path):
        self.root = Path(root)

    def save(self, history: History) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(history.to_dict(), indent=2, default=str)
        stamp = datetime.fromtimestamp(history.initial_timestamp).strftime("%Y-%m-%d_%H-%M-%S")
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()[:8]
        path = self.root / f"workflow-{stamp}-{digest}.json"
        path.write_text(payload, encoding="utf-8")
        logger.debug("saved workflow history to %s", path)
        return path
