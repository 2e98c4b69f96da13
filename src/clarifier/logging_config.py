import logging
import sys
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

NO_SESSION = "-"

# Libraries that log through the standard library when serving over HTTP.
BRIDGED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx")

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level:<8}</level> "
    "<magenta>[{extra[session]}]</magenta> <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | session={extra[session]} | {name}:{function}:{line} - {message}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def __init__(self, colorize: bool | None = None):
        self._colorize = colorize

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, colorize=self._colorize)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    """Rotating session log.

    ``serialize`` writes one JSON object per line with the session id under
    ``record.extra.session``. With ``enqueue`` set, writes go through loguru's
    background queue.
    """

    def __init__(
        self,
        path: str = "clarifier.log",
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
        enqueue: bool = True,
    ):
        self._path = Path(path)
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize
        self._enqueue = enqueue

    def register(self, level: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self._path),
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
            enqueue=self._enqueue,
        )

    def describe(self, level: str) -> str:
        return f"file ({self._path}, {'json' if self._serialize else 'text'}, {level})"


class _LoguruBridge(logging.Handler):
    """Re-emits standard-library records (uvicorn, httpx) through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info).bind(source=record.name).log(level, record.getMessage())


def bridge_stdlib_loggers(names: tuple[str, ...] = BRIDGED_LOGGERS) -> None:
    bridge = _LoguruBridge()
    for name in names:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [bridge]
        std_logger.propagate = False


def session_context(session_id: str) -> AbstractContextManager:
    """Tag every record logged inside the block with ``session_id``."""
    return logger.contextualize(session=session_id)


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

_DEFAULT_CONSUMERS = [
    {"type": "console"},
    {"type": "file", "path": "clarifier.log"},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    bridged_loggers: tuple[str, ...] = BRIDGED_LOGGERS,
) -> list[str]:
    """Replace loguru's sinks with the configured consumers.

    Records default to the ``-`` session so formats can always reference it.
    Returns one description per registered consumer.
    """
    logger.remove()
    logger.configure(extra={"session": NO_SESSION})
    level = level.upper()

    descriptions: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        sink_type = config.get("type", "")
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        options = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = str(config.get("level", level)).upper()
        try:
            consumer = cls(**options)
        except TypeError as ex:
            logger.warning(f"Invalid options for {sink_type} log consumer: {ex}")
            continue
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    if bridged_loggers:
        bridge_stdlib_loggers(bridged_loggers)
    return descriptions
