import logging
import sys
from typing import Any

from loguru import logger

from birthdays.config import get_settings


class InterceptHandler(logging.Handler):
    """Intercept stdlib logging and redirect to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _health_log_filter(record: dict[str, Any]) -> bool:
    """Filter health check logs - only show at DEBUG level."""
    message = record.get("message", "")
    if "/health" in message:
        return bool(record["level"].no <= 10)  # DEBUG level
    return True


def _format_with_extra(record: dict[str, Any]) -> str:
    """Plain format that appends bound context (minus the logger name)."""
    extra = {k: v for k, v in record["extra"].items() if k != "name"}
    suffix = " | {extra}" if extra else ""
    record["extra"]["_context"] = extra
    return (
        "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}"
        + suffix.replace("{extra}", "{extra[_context]}")
        + "\n{exception}"
    )


def setup_logging(level: str | None = None) -> None:
    """Configure loguru for the application.

    Args:
        level: Minimum level for the console sink. Defaults to DEBUG when
            `debug` is set, INFO otherwise.
    """
    settings = get_settings()
    level = level or ("DEBUG" if settings.debug else "INFO")

    # Remove default handler
    logger.remove()

    # Console output with colors in debug, plain text in production
    if settings.debug:
        logger.add(
            sys.stderr,
            level=level,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level> | {extra}"
            ),
            backtrace=True,
            diagnose=True,
        )
    else:
        # Logs go to stderr (docker logs)
        logger.add(
            sys.stderr,
            level=level,
            format=_format_with_extra,
            filter=_health_log_filter,
            backtrace=True,
            diagnose=False,
        )

    # Intercept stdlib logging into loguru
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    # httpx logs one INFO line per delivery try
    quiet = logging.DEBUG if settings.debug else logging.WARNING
    for name, floor in {
        "uvicorn": logging.INFO,
        "uvicorn.error": logging.INFO,
        "uvicorn.access": logging.INFO,
        "sqlalchemy.engine": quiet,
        "httpx": quiet,
        "apscheduler": logging.INFO,
    }.items():
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [InterceptHandler()]
        stdlib_logger.setLevel(floor)
        stdlib_logger.propagate = False


def get_logger(name: str) -> Any:
    """Get a logger bound to a name."""
    return logger.bind(name=name)
