from __future__ import annotations

import logging
from typing import Any

LOGGER_ROOT = "cex_tick_feed"
_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    if not name.startswith(LOGGER_ROOT):
        name = f"{LOGGER_ROOT}.{name}"
    return logging.getLogger(name)


def _fmt_value(v: Any) -> str:
    if v is None or isinstance(v, (int, float, bool)):
        return str(v)
    s = str(v)
    return repr(s) if (" " in s or not s) else s


def log_event(logger: logging.Logger, level: int, event: str, **ctx: Any) -> None:
    """Log `event` followed by sorted key=value context.

    Context also travels on the record as `context` for handlers that want it.
    """
    if not logger.isEnabledFor(level):
        return
    parts = [event] + [f"{k}={_fmt_value(v)}" for k, v in sorted(ctx.items())]
    logger.log(level, " ".join(parts), extra={"context": dict(ctx)})


def setup_logging(debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(level=level, format=_FORMAT)
    logging.getLogger(LOGGER_ROOT).setLevel(level)
