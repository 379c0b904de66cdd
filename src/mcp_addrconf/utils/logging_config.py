"""Logging setup for the addrconf MCP server.

Two streams: the main log (console plus a rotating file) and a perf log
with one line per timed operation, kept in its own file next to the
main one.

Environment Variables:
    ADDRCONF_LOG_LEVEL: Console level, DEBUG/INFO/WARNING/ERROR (default: INFO)
    ADDRCONF_LOG_FILE: Main log file (default: ~/.addrconf/addrconf.log)
    ADDRCONF_LOG_MAX_SIZE: Rotate after this many MB (default: 10)
    ADDRCONF_LOG_BACKUPS: Rotated files to keep (default: 5)

Usage:
    from mcp_addrconf.utils.logging_config import setup_logging, timed, timed_section

    setup_logging()

    @timed("reconcile")
    async def reconcile_all(self):
        ...

    async with timed_section("script:install", subject="hostname"):
        ...
"""
import asyncio
import functools
import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Optional

perf_logger = logging.getLogger("addrconf.perf")
main_logger = logging.getLogger("addrconf")

# Loggers that feed the main log: our own hierarchy and the package modules
MAIN_LOGGERS = ("addrconf", "mcp_addrconf")

MAIN_FORMAT = "%(asctime)s.%(msecs)03d | %(name)-25s | %(levelname)-7s | %(message)s"
PERF_FORMAT = "%(asctime)s.%(msecs)03d | PERF | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


@dataclass
class LogSettings:
    level: int = logging.INFO
    log_file: Path = Path.home() / ".addrconf" / "addrconf.log"
    max_bytes: int = 10 * 1024 * 1024
    backups: int = 5

    @property
    def perf_file(self) -> Path:
        return self.log_file.with_name("addrconf-perf.log")

    @classmethod
    def from_env(cls) -> "LogSettings":
        level_name = os.environ.get("ADDRCONF_LOG_LEVEL", "INFO").upper()
        default_file = Path.home() / ".addrconf" / "addrconf.log"
        return cls(
            level=getattr(logging, level_name, logging.INFO),
            log_file=Path(os.environ.get("ADDRCONF_LOG_FILE", str(default_file))),
            max_bytes=int(os.environ.get("ADDRCONF_LOG_MAX_SIZE", "10")) * 1024 * 1024,
            backups=int(os.environ.get("ADDRCONF_LOG_BACKUPS", "5")),
        )


def _rotating_handler(path: Path, settings: LogSettings, fmt: str) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.max_bytes,
        backupCount=settings.backups,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    return handler


def setup_logging(settings: Optional[LogSettings] = None) -> None:
    """Install the console, file and perf handlers.

    Only the first call has an effect. The console handler writes to
    stderr because stdout carries the MCP stdio transport.
    """
    global _configured
    if _configured:
        return
    _configured = True

    settings = settings or LogSettings.from_env()
    settings.log_file.parent.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler()
    console.setLevel(settings.level)
    console.setFormatter(logging.Formatter(MAIN_FORMAT, datefmt=DATE_FORMAT))
    main_file = _rotating_handler(settings.log_file, settings, MAIN_FORMAT)

    for name in MAIN_LOGGERS:
        target = logging.getLogger(name)
        target.setLevel(logging.DEBUG)
        target.addHandler(console)
        target.addHandler(main_file)

    # perf lines go to their own file and the console, never the main file
    perf_logger.setLevel(logging.DEBUG)
    perf_logger.propagate = False
    perf_logger.addHandler(_rotating_handler(settings.perf_file, settings, PERF_FORMAT))
    perf_logger.addHandler(console)

    main_logger.info(
        f"Logging initialized: level={logging.getLevelName(settings.level)}, file={settings.log_file}"
    )
    perf_logger.info(f"Performance logging to: {settings.perf_file}")


def _log_timing(
    operation: str,
    subject: Optional[str],
    start: float,
    error: Optional[BaseException] = None,
    extra: Optional[dict] = None,
) -> None:
    elapsed = (time.perf_counter() - start) * 1000
    status = "OK" if error is None else f"FAIL: {error}"
    line = f"{operation:20s} | {subject or 'N/A':15s} | {elapsed:8.2f}ms | {status}"
    if extra:
        line += " | " + " | ".join(f"{k}={v}" for k, v in extra.items())
    if error is None:
        perf_logger.info(line)
    else:
        perf_logger.warning(line)


def timed(operation: str, subject: Optional[str] = None):
    """Decorator logging how long a function (sync or async) took.

    Without an explicit ``subject`` the ``name`` attribute of the first
    argument is used, so methods of named objects label themselves.
    """
    def decorator(func: Callable) -> Callable:
        def label(args) -> Optional[str]:
            if subject is None and args and hasattr(args[0], "name"):
                return str(args[0].name)
            return subject

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs) -> Any:
                start = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    _log_timing(operation, label(args), start, e)
                    raise
                _log_timing(operation, label(args), start)
                return result

            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_timing(operation, label(args), start, e)
                raise
            _log_timing(operation, label(args), start)
            return result

        return sync_wrapper

    return decorator


@asynccontextmanager
async def timed_section(operation: str, subject: Optional[str] = None, **extra):
    """Time the body of an ``async with`` block."""
    start = time.perf_counter()
    try:
        yield
    except Exception as e:
        _log_timing(operation, subject, start, e, extra)
        raise
    _log_timing(operation, subject, start, extra=extra)
