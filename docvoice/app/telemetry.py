"""
DocVoice - JSONL Turn Telemetry Logger

Appends one JSON line per finished voice turn to a log file.
Each line captures:
    - session_id, generation
    - outcome (completed, interrupted, muted, reply_failed, ...)
    - error kind, if any
    - reply_ms (request to reply event) and total_ms (start to idle)
    - wall-clock timestamp

Usage:
    telemetry = TurnTelemetryLogger(log_dir="logs")
    telemetry.log_turn({"session_id": "s1", "generation": 3, ...})
    recent = telemetry.recent(n=10)
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

_DEFAULT_LOG_DIR = "logs"
_DEFAULT_LOG_FILE = "turns.jsonl"

# Outcomes that mean the user cut the assistant short.
INTERRUPTED_OUTCOMES = frozenset(["interrupted", "muted"])


class TurnTelemetryLogger:
    """Append-only JSONL logger for voice turn telemetry."""

    def __init__(
        self,
        log_dir: str = _DEFAULT_LOG_DIR,
        log_file: str = _DEFAULT_LOG_FILE,
        enabled: bool = True,
    ):
        self._log_dir = Path(log_dir)
        self._log_path = self._log_dir / log_file
        self._enabled = enabled
        self._turn_count = 0
        if enabled:
            self._ensure_dir()

    def _ensure_dir(self) -> None:
        """Create log directory if it doesn't exist."""
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error("telemetry: cannot create log dir %s: %s", self._log_dir, e)

    @property
    def log_path(self) -> Path:
        return self._log_path

    @property
    def turn_count(self) -> int:
        """Number of turns logged in this process lifetime."""
        return self._turn_count

    def log_turn(self, turn_data: Dict[str, Any]) -> bool:
        """
        Append a turn record as a single JSON line.

        Returns:
            True if the write succeeded.
        """
        if not self._enabled:
            return False

        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "interrupted": turn_data.get("outcome") in INTERRUPTED_OUTCOMES,
            **turn_data,
        }

        try:
            line = json.dumps(record, default=str, ensure_ascii=False)
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
            self._turn_count += 1
            return True
        except OSError as e:
            logger.error("telemetry: write failed: %s", e)
            return False

    def recent(self, n: int = 10) -> List[Dict[str, Any]]:
        """
        Read the last *n* turn records from the log file.

        Returns:
            List of dicts (most recent last).
        """
        if not self._log_path.exists():
            return []

        try:
            with open(self._log_path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            logger.error("telemetry: read failed: %s", e)
            return []

        entries: List[Dict[str, Any]] = []
        for line in lines[-n:]:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                logger.debug("telemetry: skipping malformed line")
        return entries

    def summary(self) -> Dict[str, Any]:
        """Aggregate stats over the log: count, outcomes, p50/p95 reply latency."""
        entries = self.recent(n=10000)
        if not entries:
            return {"count": 0}

        outcomes: Dict[str, int] = {}
        for e in entries:
            outcome = e.get("outcome", "unknown")
            outcomes[outcome] = outcomes.get(outcome, 0) + 1

        result: Dict[str, Any] = {
            "count": len(entries),
            "outcomes": outcomes,
            "interrupted_count": sum(1 for e in entries if e.get("interrupted")),
            "error_count": sum(1 for e in entries if e.get("error")),
        }

        replies = sorted(e["reply_ms"] for e in entries if e.get("reply_ms"))
        if replies:
            count = len(replies)
            result["reply_p50_ms"] = round(replies[count // 2], 1)
            result["reply_p95_ms"] = round(replies[min(int(count * 0.95), count - 1)], 1)
        return result
