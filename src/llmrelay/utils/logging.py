import logging
import typing as t
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

_STDLIB_LEVELS = {
    "TRACE": logging.DEBUG,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
}

log = structlog.get_logger(__name__)


def setup_logging(level: str = "ERROR") -> None:
    logging.getLogger("llmrelay").setLevel(_STDLIB_LEVELS.get(level.upper(), logging.ERROR))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@contextmanager
def logging_context(**required_context) -> Iterator[None]:
    current = structlog.contextvars.get_contextvars()
    to_bind = {k: v for k, v in required_context.items() if k not in current}

    if to_bind:
        with structlog.contextvars.bound_contextvars(**to_bind):
            yield
    else:
        yield


def mask_headers(headers: t.Mapping[str, str] | None) -> dict[str, str]:
    """Replace header values with a mask so credentials never reach the logs."""
    return {key: "***" for key in (headers or {})}


def wrap_callback(
    callback: t.Callable[..., t.Any],
    message: str = "Response error",
) -> t.Callable[..., t.Any]:
    """
    Log errors handed to a request callback before forwarding them.

    Parameters
    ----------
    callback : typing.Callable[..., typing.Any]
        Caller callback with an ``(error, chunk)`` signature.
    message : str, optional
        Log event used when an error is forwarded.

    Returns
    -------
    typing.Callable[..., typing.Any]
        Wrapped callback.
    """

    def wrapper(error: t.Any, *args: t.Any) -> t.Any:
        if error is not None:
            log.error(event=message, error=str(object=error))
        return callback(error, *args)

    return wrapper
