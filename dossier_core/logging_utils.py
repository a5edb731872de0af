"""
Logging Utilities for the documentation pipeline

Module loggers use the standard logging package. RunLogger additionally
keeps a per-run audit log on disk:
- {log_dir}/run.log - Human-readable text log
- {log_dir}/events.jsonl - Structured JSONL events (stage transitions,
  extraction summary, collaborator calls)
"""

import json
import logging
import re
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"

    @property
    def rank(self) -> int:
        return logging.getLevelName(self.value)


# Environment assignments, bearer tokens, PEM blocks
SECRET_PATTERNS = [
    (re.compile(r"(API_KEY|TOKEN|SECRET|PASSWORD|PASS|AUTH)[=:]\s*['\"]?([^'\"\ \n]+)", re.I), r"\1=***"),
    (re.compile(r"(Bearer|token)\s+([a-zA-Z0-9_\-\.]+)", re.I), r"\1 ***"),
    (re.compile(r"-----BEGIN [A-Z ]+-----.*?-----END [A-Z ]+-----", re.DOTALL), "*** PRIVATE KEY ***"),
]


def mask_secrets(text: str) -> str:
    """Replace API keys, bearer tokens and key blocks in text with ***."""
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Configure root logging for command-line and library use."""
    handlers = [logging.StreamHandler()]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


class RunLogger:
    """
    On-disk record of one pipeline run: run.log for people, events.jsonl
    for tools. Each record goes to both files. Prompts and generated text
    are never passed in, only their hashes.

    Safe to call from concurrently running stages.
    """

    def __init__(
        self,
        log_dir: Path,
        min_level: LogLevel = LogLevel.INFO,
        mask_secrets_enabled: bool = True,
        events_log: str = "events.jsonl",
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.text_log = self.log_dir / "run.log"
        self.json_log = self.log_dir / events_log
        self.min_level = min_level
        self.mask_secrets_enabled = mask_secrets_enabled
        self._lock = threading.Lock()

    def emit(
        self,
        line: str,
        level: LogLevel = LogLevel.INFO,
        event_type: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Write one text line and, when event_type is given, one JSONL event."""
        if level.rank < self.min_level.rank:
            return
        now = datetime.now(timezone.utc).isoformat()
        text = f"[{now}] [{level.value}] {line}\n"
        event = None
        if event_type is not None:
            event = json.dumps({"timestamp": now, "level": level.value, "type": event_type, "data": data or {}},
                               default=str) + "\n"
        if self.mask_secrets_enabled:
            text = mask_secrets(text)
            event = mask_secrets(event) if event else event
        with self._lock:
            with self.text_log.open("a", encoding="utf-8") as f:
                f.write(text)
            if event:
                with self.json_log.open("a", encoding="utf-8") as f:
                    f.write(event)

    def log_stage(self, stage: str, state: str, reason: str = "", duration_ms: Optional[int] = None) -> None:
        """Scheduler state transition."""
        parts = [f"STAGE={stage}", f"STATE={state}"]
        data: Dict[str, Any] = {"stage": stage, "state": state, "reason": reason}
        if reason:
            parts.append(f"REASON={reason}")
        if duration_ms is not None:
            parts.append(f"DURATION={duration_ms}ms")
            data["duration_ms"] = duration_ms
        level = LogLevel.ERROR if state == "failed" else LogLevel.INFO
        self.emit(" ".join(parts), level, "stage", data)

    def log_extraction(self, summary: Dict[str, Any]) -> None:
        line = f"EXTRACTION files={summary.get('files', 0)} status={summary.get('parse_status', {})}"
        self.emit(line, LogLevel.INFO, "extraction", summary)

    def log_collaborator_call(
        self,
        model: str,
        prompt_hash: str,
        cached: bool,
        duration_ms: float,
        error: Optional[str] = None,
    ) -> None:
        data = {"model": model, "prompt_hash": prompt_hash, "cached": cached, "duration_ms": duration_ms}
        line = f"LLM model={model} prompt={prompt_hash} cached={cached} DURATION={duration_ms:.1f}ms"
        level = LogLevel.INFO
        if error:
            data["error"] = error
            line += f" ERROR={error}"
            level = LogLevel.WARNING
        self.emit(line, level, "collaborator", data)

    def info(self, message: str) -> None:
        self.emit(message, LogLevel.INFO)

    def warning(self, message: str) -> None:
        self.emit(message, LogLevel.WARNING)

    def error(self, message: str) -> None:
        self.emit(message, LogLevel.ERROR)
