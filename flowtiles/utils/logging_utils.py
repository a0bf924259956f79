import logging
from typing import Union

import structlog
from structlog.stdlib import add_log_level, add_logger_name

# numba logs every compilation pass at DEBUG
_NOISY_LOGGERS = ("numba",)


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level {level!r}")
    return resolved


def setup_logging(level: Union[int, str] = logging.INFO, colors: bool = True) -> int:
    """Route flowtiles' structlog events through standard logging.

    Accepts a level number or name such as ``NavigationSettings.log_level``
    and returns the numeric level applied.
    """
    level = _resolve_level(level)
    logging.basicConfig(level=level, format="%(message)s")
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_logger_name,
            add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    return level
