# utils/logger.py
"""loguru setup shared by the benchmark, its CLI and the tests."""

from __future__ import annotations

import os
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, TypeVar, cast

from loguru import logger as _logger
from loguru._logger import Logger as LoguruLogger
from tqdm.auto import tqdm

T = TypeVar("T")

TAG_W = 8  # width of the module column


@dataclass(frozen=True)
class LoggingCfg:
    """Defaults used until Logger.configure() says otherwise."""

    level: str = "INFO"
    json: bool = True
    file_sink: bool = True
    log_dir: Path = Path(".logs")
    console: str = (
        "<green>{time:HH:mm:ss.SSS}</green> "
        "<level>{level:<5.5}</level> "
        f"<cyan>{{extra[module]:<{TAG_W}.{TAG_W}}}</cyan> "
        "<level>{message}</level>"
    )
    plain: str = (
        f"{{time:YYYY-MM-DD HH:mm:ss.SSS}} {{level:<5.5}} "
        f"{{extra[module]:<{TAG_W}.{TAG_W}}} {{message}}"
    )
    bar: str = "{desc}: {percentage:3.0f}%|{bar}| {n_fmt}/{total_fmt} [{elapsed}]"


LOGCFG = LoggingCfg()


class Logger:
    """Process-wide loguru sinks plus per-module bound loggers."""

    _lock = threading.Lock()
    _sinks: List[int] = []
    _ready = False
    _log_dir: Path = LOGCFG.log_dir
    _log_file: Optional[Path] = None

    @classmethod
    def _install(cls, level: str, json_format: bool, file_sink: bool) -> None:
        for sink_id in cls._sinks:
            _logger.remove(sink_id)
        cls._sinks = [_logger.add(sys.stdout, level=level, format=LOGCFG.console)]
        cls._log_file = None
        if file_sink:
            cls._log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            suffix = ".log.json" if json_format else ".log"
            cls._log_file = cls._log_dir / f"depthbench_{stamp}{suffix}"
            cls._sinks.append(
                _logger.add(
                    cls._log_file,
                    level=level,
                    serialize=json_format,
                    format=LOGCFG.plain,
                )
            )
        cls._ready = True

    @classmethod
    def configure(
        cls,
        level: Optional[str] = None,
        log_dir: Optional[Path | str] = None,
        json_format: Optional[bool] = None,
        file_sink: Optional[bool] = None,
    ) -> None:
        """
        Replace the sinks. Loggers handed out earlier by get_logger() keep
        working since they are bound views of the same loguru core.
        """
        with cls._lock:
            if not cls._ready:
                # drop loguru's import-time stderr handler once
                _logger.remove()
            if log_dir is not None:
                cls._log_dir = Path(log_dir)
            cls._install(
                level or LOGCFG.level,
                LOGCFG.json if json_format is None else bool(json_format),
                LOGCFG.file_sink if file_sink is None else bool(file_sink),
            )

    @classmethod
    def log_file(cls) -> Optional[Path]:
        return cls._log_file

    @classmethod
    def get_logger(cls, name: str) -> LoguruLogger:
        """Logger tagged with ``name``; default sinks are set up on first use."""
        if not cls._ready:
            cls.configure()
        return _logger.bind(module=name)

    @staticmethod
    def progress(
        iterable: Iterable[T],
        desc: Optional[str] = None,
        total: Optional[int] = None,
    ) -> Iterable[T]:
        """tqdm bar in the project style; hidden when stderr is not a tty."""
        return cast(
            Iterable[T],
            tqdm(
                iterable,
                desc=desc,
                total=total,
                leave=False,
                disable=None,
                bar_format=LOGCFG.bar,
            ),
        )


class QuietNativeOutput:
    """Redirect fds 1 and 2 to /dev/null while Open3D or OpenCV chatter."""

    def __init__(self) -> None:
        self._saved: List[int] = []
        self._null: Optional[int] = None

    def __enter__(self) -> "QuietNativeOutput":
        sys.stdout.flush()
        sys.stderr.flush()
        self._null = os.open(os.devnull, os.O_WRONLY)
        for fd in (1, 2):
            self._saved.append(os.dup(fd))
            os.dup2(self._null, fd)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for fd, saved in zip((1, 2), self._saved):
            os.dup2(saved, fd)
            os.close(saved)
        self._saved = []
        if self._null is not None:
            os.close(self._null)
            self._null = None
