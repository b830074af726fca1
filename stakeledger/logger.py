"""
Stake Ledger Logging
====================

Process-wide logging for the ledger, built on the standard `logging` module
with a `rich` console handler. Settings come from the LOG_* keys of the
environment configuration in `stakeledger.constants`.

Usage:
    >>> from stakeledger.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Sealed epoch 12")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_FILE_OUTPUT,
)


LOG_FILE_PATH = Path.cwd() / "logs" / "stakeledger.log"

LEDGER_THEME = Theme({
    "ledger.level_debug":    "dim",
    "ledger.level_info":     "bold green",
    "ledger.level_warning":  "bold yellow",
    "ledger.level_error":    "bold red",
    "ledger.level_critical": "bold red reverse",
    "ledger.logger_name":    "magenta",
    "ledger.validator":      "bold yellow",
    "ledger.epoch":          "bold magenta",
    "ledger.amount":         "bold cyan",
    "ledger.penalty":        "bold red",
    "ledger.timestamp":      "cyan",
})


def _warn(message: str) -> None:
    # Logging is not set up yet when settings are checked
    print(f"stakeledger.logger: {message}", file=sys.stderr)


def check_log_format(log_format: str) -> str:
    """
    Return `log_format` if a record formats cleanly with it, else the default.
    """
    if not log_format:
        return str(LOG_FORMAT.default())

    record = logging.LogRecord(
        name="stakeledger", level=logging.INFO, pathname="", lineno=0,
        msg="check", args=(), exc_info=None,
    )
    try:
        rendered = logging.Formatter(fmt=str(log_format)).format(record)
    except (ValueError, KeyError, TypeError) as e:
        _warn(f"invalid LOG_FORMAT ({e}), using default")
        return str(LOG_FORMAT.default())

    if re.search(r"%\([a-zA-Z_]\w*\)", rendered):
        _warn("LOG_FORMAT left placeholders unformatted, using default")
        return str(LOG_FORMAT.default())
    return str(log_format)


def check_date_format(date_format: str) -> str:
    """
    Return `date_format` if it contains at least one strftime directive and
    renders, else the default.
    """
    if not date_format or not re.search(r"%[a-zA-Z]", str(date_format)):
        return str(LOG_DATE_FORMAT.default())
    try:
        time.strftime(str(date_format), time.gmtime(0))
    except ValueError as e:
        _warn(f"invalid LOG_DATE_FORMAT ({e}), using default")
        return str(LOG_DATE_FORMAT.default())
    return str(date_format)


class TerminalSafeFormatter(logging.Formatter):
    """
    Formatter that strips escape sequences and control characters.

    Account names and pubkeys end up in log lines verbatim; removing ANSI
    sequences keeps them from rewriting the terminal.
    """

    _unsafe_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"      # CSI sequences
        r"|\x1b[@-Z\\-_]"               # two-character escapes
        r"|[\x00-\x08\x0B-\x1F\x7F]"    # control characters except tab and newline
    )

    @classmethod
    def sanitize(cls, text: str) -> str:
        return cls._unsafe_re.sub("", text) if text else text

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class LedgerLogHighlighter(RegexHighlighter):
    """Highlights validator ids, epochs, amounts and penalties in log lines."""

    base_style = "ledger."
    highlights = [
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<validator>\bvalidator #\d+)",
        r"(?P<epoch>\b[Ee]poch \d+)",
        r"(?P<penalty>\bpenalty=\d+)",
        r"(?P<amount>\bamount=\d+)",
        r"(?P<timestamp>^.*?UTC)",
    ]


class LogManager:
    """
    Singleton owner of the root logger configuration.

    The first `configure` call installs the handlers; later calls are no-ops
    so that library modules can ask for loggers freely.
    """

    _instance: Optional["LogManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._configured = False
        return cls._instance

    @property
    def is_configured(self) -> bool:
        return self._configured

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Install console and file handlers on the root logger.

        Args:
            log_level: Level name, LOG_LEVEL if omitted
            log_file: Rotating log file, `logs/stakeledger.log` if omitted
            console_output: Log to stdout
            file_output: Log to the file, LOG_FILE_OUTPUT if omitted
        """
        with self._lock:
            if self._configured:
                return

            level = getattr(logging, str(log_level or LOG_LEVEL).upper(), logging.INFO)
            formatter = TerminalSafeFormatter(
                fmt=check_log_format(LOG_FORMAT),
                datefmt=check_date_format(LOG_DATE_FORMAT) + " UTC",
            )
            formatter.converter = time.gmtime

            handlers: List[logging.Handler] = []
            if console_output:
                handlers.append(self._console_handler())
            if (bool(LOG_FILE_OUTPUT) if file_output is None else file_output):
                handlers.append(self._file_handler(log_file or LOG_FILE_PATH))

            root = logging.getLogger()
            root.setLevel(level)
            root.handlers.clear()
            for handler in handlers:
                handler.setLevel(level)
                handler.setFormatter(formatter)
                root.addHandler(handler)

            self._configured = True

    @staticmethod
    def _console_handler() -> logging.Handler:
        if not LOG_CONSOLE_HIGHLIGHTING:
            return logging.StreamHandler(sys.stdout)
        return RichHandler(
            console=Console(theme=LEDGER_THEME, highlight=False),
            highlighter=LedgerLogHighlighter(),
            keywords=[],
            rich_tracebacks=True,
            show_time=False,
            show_level=False,
            show_path=False,
            markup=False,
        )

    @staticmethod
    def _file_handler(path: Path) -> logging.Handler:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=LOG_MAX_FILE_SIZE,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Logger for `name`, configuring the logging system on first use."""
    return _manager.get_logger(name)
