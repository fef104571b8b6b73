"""
Immutability Guard.

Verifies that the live rule registry is still made only of immutable nodes
and still hashes to the fingerprint recorded at startup. Runs once at
startup and then periodically in the background.

On violation:
- production: log CRITICAL and terminate the process (SIGTERM to self)
- otherwise: log CRITICAL and count the violation
"""

import asyncio
import logging
import os
import signal
import time
from dataclasses import fields, is_dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional

from ..config.rules import RuleRegistry
from ..core.errors import ImmutabilityViolation
from ..utils.logger import get_decision_logger
from ..utils.metrics import EngineMetrics

IMMUTABLE_SCALARS = (str, int, float, bool, type(None))


def find_mutable_nodes(value: Any, path: str = "rules") -> List[str]:
    """Return paths of every node that is not an immutable value."""
    if isinstance(value, IMMUTABLE_SCALARS):
        return []

    if is_dataclass(value) and not isinstance(value, type):
        found = [] if value.__dataclass_params__.frozen else [path]
        for f in fields(value):
            found.extend(find_mutable_nodes(getattr(value, f.name), f"{path}.{f.name}"))
        return found

    if isinstance(value, MappingProxyType):
        found = []
        for key, item in value.items():
            found.extend(find_mutable_nodes(item, f"{path}[{key!r}]"))
        return found

    if isinstance(value, (tuple, frozenset)):
        found = []
        for index, item in enumerate(value):
            found.extend(find_mutable_nodes(item, f"{path}[{index}]"))
        return found

    return [f"{path} ({type(value).__name__})"]


def _terminate_process() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


class ImmutabilityGuard:
    """
    Periodic integrity check of the rule registry.

    Args:
        rules: Registry built at startup
        production: Terminate on violation when True
        interval_s: Seconds between background checks
        terminate: Called on violation in production (defaults to SIGTERM to self)
        metrics: Optional engine metrics
    """

    def __init__(
        self,
        rules: RuleRegistry,
        production: bool = False,
        interval_s: float = 30.0,
        terminate: Optional[Callable[[], None]] = None,
        metrics: Optional[EngineMetrics] = None,
        name: str = "ImmutabilityGuard"
    ):
        self.rules = rules
        self.production = production
        self.interval_s = interval_s
        self.terminate = terminate or _terminate_process
        self.metrics = metrics
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.{self.name}")
        self.decision_logger = get_decision_logger(f"{__name__}.{self.name}")

        self.expected_fingerprint = rules.fingerprint()
        self.checks = 0
        self.violations = 0
        self.last_check_at: Optional[int] = None
        self.last_violation: Optional[str] = None

        self.is_running = False
        self.monitoring_task: Optional[asyncio.Task] = None

    def verify(self) -> None:
        """
        Check structure and fingerprint once.

        Raises:
            ImmutabilityViolation: If a mutable node is found or the fingerprint changed
        """
        self.checks += 1
        self.last_check_at = int(time.time() * 1000)

        mutable = find_mutable_nodes(self.rules)
        if mutable:
            raise ImmutabilityViolation(f"Mutable nodes in rule registry: {', '.join(mutable)}")

        current = self.rules.fingerprint()
        if current != self.expected_fingerprint:
            raise ImmutabilityViolation(
                f"Rule fingerprint changed: {self.expected_fingerprint} -> {current}"
            )

    def check(self) -> bool:
        """Run verify() and apply the violation policy. Returns True when intact."""
        try:
            self.verify()
            return True
        except ImmutabilityViolation as e:
            self._on_violation(str(e))
            return False

    def _on_violation(self, message: str) -> None:
        self.violations += 1
        self.last_violation = message
        self.decision_logger.guard_violation(message, state="production" if self.production else "non-production")
        if self.metrics:
            self.metrics.guard_violation()

        if self.production:
            self.logger.critical("Terminating process after immutability violation")
            self.terminate()

    async def start(self):
        """Verify once, then start the background check loop."""
        self.check()
        self.is_running = True
        self.monitoring_task = asyncio.create_task(self._monitoring_loop())
        self.logger.info(
            f"✅ Immutability guard started (fingerprint={self.expected_fingerprint}, "
            f"interval={self.interval_s}s)"
        )

    async def stop(self):
        self.is_running = False
        if self.monitoring_task:
            self.monitoring_task.cancel()
            try:
                await self.monitoring_task
            except asyncio.CancelledError:
                pass
            self.monitoring_task = None
        self.logger.info("Immutability guard stopped")

    async def _monitoring_loop(self):
        while self.is_running:
            await asyncio.sleep(self.interval_s)
            self.check()

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "production": self.production,
            "fingerprint": self.expected_fingerprint,
            "checks": self.checks,
            "violations": self.violations,
            "last_check_at": self.last_check_at,
            "last_violation": self.last_violation,
        }
