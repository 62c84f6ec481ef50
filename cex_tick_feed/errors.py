from __future__ import annotations

from typing import Iterable, Optional


class FeedError(Exception):
    """Base class for every error raised by cex_tick_feed."""


# ---------------------------------------------------------------------------
# Period / bar construction
# ---------------------------------------------------------------------------


class PeriodError(FeedError):
    pass


class InvalidPeriod(PeriodError):
    def __init__(self, text: object, reason: str = "unrecognized period") -> None:
        self.text = text
        self.reason = reason
        super().__init__(f"invalid period {text!r}: {reason}")


class NotEnoughData(PeriodError):
    pass


class DateConversion(PeriodError):
    pass


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class IngestError(FeedError):
    pass


class NetworkError(IngestError):
    pass


class BadStatusError(IngestError):
    def __init__(self, status: int, url: str = "") -> None:
        self.status = int(status)
        self.url = url
        super().__init__(f"HTTP {self.status} from {url}" if url else f"HTTP {self.status}")


class DeserializeError(IngestError):
    pass


class ExchangeRejectedError(IngestError):
    def __init__(self, messages: Iterable[str]) -> None:
        self.messages = [str(m) for m in messages]
        super().__init__("exchange rejected request: " + "; ".join(self.messages))


class StorageError(IngestError):
    """A tick store read/write failed. The cursor is left where it was."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)


class ConfigError(FeedError):
    pass
