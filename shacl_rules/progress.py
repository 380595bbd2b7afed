"""
shacl-rules - Progress reporting and cooperative cancellation.

The rule engine polls ``is_canceled()`` at the top of every round and
before every rule body, and reports coarse progress through the other
methods. Cancellation is cooperative: nothing is interrupted mid-query.

Usage:
    token = CancellationToken()
    threading.Timer(30, token.cancel).start()
    model = RulesEntailment().create_model_with_entailment(ds, None, shapes, token)
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, runtime_checkable

__all__ = [
    "ProgressMonitor",
    "NullProgressMonitor",
    "CancellationToken",
    "LoggingProgressMonitor",
]


@runtime_checkable
class ProgressMonitor(Protocol):
    def is_canceled(self) -> bool: ...

    def begin_task(self, label: str, total_work: int) -> None: ...

    def sub_task(self, label: str) -> None: ...

    def worked(self, amount: int) -> None: ...

    def done(self) -> None: ...


class NullProgressMonitor:
    """Never cancels, reports nothing."""

    def is_canceled(self) -> bool:
        return False

    def begin_task(self, label: str, total_work: int) -> None:
        pass

    def sub_task(self, label: str) -> None:
        pass

    def worked(self, amount: int) -> None:
        pass

    def done(self) -> None:
        pass


class CancellationToken(NullProgressMonitor):
    """A monitor that another thread can cancel."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    def is_canceled(self) -> bool:
        return self._event.is_set()


class LoggingProgressMonitor(CancellationToken):
    """Logs task progress as a fraction of the announced total work."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.INFO) -> None:
        super().__init__()
        self._logger = logger or logging.getLogger("shacl_rules.progress")
        self._level = level
        self._label = ""
        self._total = 0
        self._done = 0

    def begin_task(self, label: str, total_work: int) -> None:
        self._label = label
        self._total = max(total_work, 0)
        self._done = 0
        self._logger.log(self._level, "%s started", label)

    def sub_task(self, label: str) -> None:
        self._logger.log(self._level, "%s: %s", self._label, label)

    def worked(self, amount: int) -> None:
        self._done += amount
        if self._total:
            fraction = min(self._done / self._total, 1.0)
            self._logger.log(self._level, "%s: %.0f%%", self._label, fraction * 100)

    @property
    def fraction(self) -> float:
        if not self._total:
            return 0.0
        return min(self._done / self._total, 1.0)

    def done(self) -> None:
        self._logger.log(self._level, "%s done", self._label)
