"""
Structured logging for the decision engine.

Provides:
- JSON formatting for production
- An in-memory ring buffer served by the /logs endpoint
- Domain helpers for decisions, provider degradation and gate failures
"""

import json
import logging
import sys
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

# Extra attributes copied into JSON log entries when present on a record
EXTRA_FIELDS = (
    "request_id",
    "symbol",
    "source",
    "action",
    "confidence",
    "provider",
    "gate",
    "state",
    "execution_time",
)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for field_name in EXTRA_FIELDS:
            if hasattr(record, field_name):
                log_entry[field_name] = getattr(record, field_name)

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class LogBuffer(logging.Handler):
    """
    Logging handler that keeps recent records in memory.

    Thread-safe circular buffer; newest entries are returned first.
    """

    def __init__(self, max_size: int = 1000):
        super().__init__()
        self.max_size = max_size
        self.buffer = deque(maxlen=max_size)
        self.lock = threading.RLock()
        self.counts: Dict[str, int] = {"ERROR": 0, "WARNING": 0, "INFO": 0, "CRITICAL": 0}

    def emit(self, record):
        try:
            log_entry = {
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            for field_name in EXTRA_FIELDS:
                if hasattr(record, field_name):
                    log_entry[field_name] = getattr(record, field_name)

            with self.lock:
                self.buffer.append(log_entry)
                if record.levelname in self.counts:
                    self.counts[record.levelname] += 1
        except Exception:
            self.handleError(record)

    def get_logs(
        self,
        lines: int = 100,
        level: Optional[str] = None,
        search: Optional[str] = None,
        symbol: Optional[str] = None
    ) -> List[Dict]:
        """
        Get logs from the buffer with optional filtering.

        Args:
            lines: Maximum number of entries to return
            level: Filter by log level
            search: Case-insensitive substring filter on the message
            symbol: Only entries tagged with this symbol

        Returns:
            List of log entries, newest first
        """
        with self.lock:
            logs = list(self.buffer)

        if level:
            logs = [log for log in logs if log["level"] == level.upper()]
        if search:
            logs = [log for log in logs if search.lower() in log["message"].lower()]
        if symbol:
            logs = [log for log in logs if log.get("symbol") == symbol]

        logs.reverse()
        return logs[:lines]

    def get_stats(self) -> Dict:
        with self.lock:
            return {
                "total_logs": len(self.buffer),
                "max_size": self.max_size,
                "errors": self.counts["ERROR"],
                "warnings": self.counts["WARNING"],
                "critical": self.counts["CRITICAL"],
                "info": self.counts["INFO"],
                "buffer_full": len(self.buffer) >= self.max_size,
            }

    def clear(self):
        with self.lock:
            self.buffer.clear()
            for level in self.counts:
                self.counts[level] = 0


class DecisionLogger:
    """Domain-specific logging helpers for the decision cycle."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def decision(self, symbol: str, action: str, confidence: float, request_id: str = None, **context):
        extra = {
            'symbol': symbol,
            'action': action,
            'confidence': confidence,
            'request_id': request_id,
            **context
        }
        self.logger.info(
            f"🎯 Decision {action} for {symbol} (confidence={confidence:.1f})", extra=extra
        )

    def provider_degraded(self, symbol: str, provider: str, kind: str, message: str, **context):
        extra = {'symbol': symbol, 'provider': provider, **context}
        self.logger.warning(
            f"Provider {provider} degraded for {symbol} [{kind}]: {message}", extra=extra
        )

    def gate_failed(self, symbol: str, gate: str, reason: str, **context):
        extra = {'symbol': symbol, 'gate': gate, **context}
        self.logger.info(f"❌ {gate} failed for {symbol}: {reason}", extra=extra)

    def guard_violation(self, message: str, **context):
        self.logger.critical(f"🚨 Immutability violation: {message}", extra=context)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = True,
    log_buffer: Optional[LogBuffer] = None
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path
        json_format: Use JSON formatting
        log_buffer: Optional in-memory buffer to attach

    Returns:
        The configured root logger
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper()))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if log_buffer is not None:
        logger.addHandler(log_buffer)

    return logger


def get_decision_logger(name: str) -> DecisionLogger:
    return DecisionLogger(name)
