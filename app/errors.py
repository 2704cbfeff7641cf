"""Exceptions raised around the refresh boundary."""

from __future__ import annotations


class UpstreamError(Exception):
    """An upstream catalog or episode service returned an unusable response."""

    def __init__(self, service: str, message: str, *, status_code: int | None = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class ProviderFetchFailure(Exception):
    """A data provider failed while refreshing a cache key."""

    def __init__(self, key: str, cause: BaseException):
        super().__init__(f"Refresh of {key} failed: {cause}")
        self.key = key
        self.cause = cause


class CallbackFailure(Exception):
    """An update subscriber raised while being notified."""

    def __init__(self, key: str, cause: BaseException):
        super().__init__(f"Subscriber for {key} failed: {cause}")
        self.key = key
        self.cause = cause
