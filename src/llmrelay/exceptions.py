"""
llmrelay-specific runtime exceptions.
"""

from __future__ import annotations


class RelayError(Exception):
    """
    Base class for errors raised by llmrelay.
    """


class SetupError(RelayError):
    """
    Signal that an adapter ``setup`` handler reported failure.

    Notes
    -----
    The client handles this error itself: the request is never dispatched
    and ``Client.request`` returns ``None``.
    """


class TransportError(RelayError):
    """
    Network-level failure of an HTTP exchange.

    Delivered to the caller as the ``error`` argument of the request callback.
    HTTP error statuses are not transport errors.

    Parameters
    ----------
    message : str
        Human-readable failure description.
    url : str | None, optional
        Request URL.
    method : str | None, optional
        HTTP method.
    """

    def __init__(self, message: str, *, url: str | None = None, method: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.url = url
        self.method = method

    def __str__(self) -> str:
        if self.url is None:
            return self.message
        return f"{self.method or 'POST'} {self.url}: {self.message}"
