"""Benchmark exception types and process-level error hooks."""

from __future__ import annotations

import signal
import sys
import traceback
from typing import Callable, List, Optional

from .logger import Logger


class DepthBenchError(Exception):
    """Base class for benchmark related errors."""


class AccuracyError(DepthBenchError):
    """An algorithm under test missed one or more accuracy thresholds."""

    def __init__(self, message: str, failures: Optional[List[str]] = None):
        super().__init__(message)
        self.failures: List[str] = list(failures or [])


class ErrorTracker:
    """
    Global hooks: log uncaught exceptions, turn SIGINT / SIGTERM into a
    clean exit, and run registered cleanups on either path.
    """

    logger = Logger.get_logger("errors")
    _cleanups: List[Callable[[], None]] = []
    _prev_hook: Optional[Callable[..., None]] = None

    @classmethod
    def register_cleanup(cls, func: Callable[[], None]) -> None:
        cls._cleanups.append(func)

    @classmethod
    def unregister_cleanup(cls, func: Callable[[], None]) -> None:
        if func in cls._cleanups:
            cls._cleanups.remove(func)

    @classmethod
    def _run_cleanup(cls) -> None:
        while cls._cleanups:
            func = cls._cleanups.pop()
            try:
                func()
            except Exception as e:
                cls.logger.error(f"[CLEANUP] {getattr(func, '__name__', func)}: {e}")

    @classmethod
    def install_excepthook(cls) -> None:
        """Route uncaught exceptions through the logger (idempotent)."""
        if cls._prev_hook is not None:
            return
        cls._prev_hook = sys.excepthook

        def _hook(exc_type, exc, tb) -> None:
            text = "".join(traceback.format_exception(exc_type, exc, tb))
            cls.logger.error(f"[UNCAUGHT] {text}")
            cls._run_cleanup()
            cls._prev_hook(exc_type, exc, tb)

        sys.excepthook = _hook
        cls.logger.debug("[HOOK] excepthook installed")

    @classmethod
    def install_signal_handlers(cls) -> None:
        def _on_signal(signum, frame) -> None:
            cls.logger.warning(f"[SIGNAL] {signal.Signals(signum).name}, stopping")
            cls._run_cleanup()
            raise SystemExit(128 + signum)

        for sig in (signal.SIGINT, signal.SIGTERM):
            signal.signal(sig, _on_signal)

    @classmethod
    def report(cls, exc: BaseException, context: str = "") -> str:
        """Log ``exc`` with its traceback and return the formatted text."""
        if exc.__traceback__ is not None:
            text = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        else:
            text = f"{type(exc).__name__}: {exc}"
        cls.logger.error(f"{context}: {text}" if context else text)
        return text
