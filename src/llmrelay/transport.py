"""
HTTP transport driver built on ``httpx``.

A ``TransportRequest`` is executed as an async stream of transport events:
zero or more ``ChunkReceived`` (streaming requests only) followed by exactly
one terminal event, ``ResponseCompleted`` or ``TransportFailed``. ``Transport.send``
pumps that stream into a sink from a background task and returns a
cancellable ``RequestHandle``.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import socket
import typing as t
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    Future,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from llmrelay.exceptions import TransportError
from llmrelay.utils.logging import mask_headers

log = structlog.get_logger(__name__)

# HTTP statuses curl treats as transient for --retry.
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

# Failures of building or sending a request that end in a failed exchange.
_REQUEST_ERRORS = (httpx.RequestError, httpx.InvalidURL, UnicodeEncodeError)


def _is_transient(response: httpx.Response) -> bool:
    return response.status_code in RETRYABLE_STATUS_CODES


def _last_outcome(retry_state: RetryCallState) -> httpx.Response:
    return t.cast(Future, retry_state.outcome).result()


@dataclass(frozen=True)
class TransportConfig:
    """
    Connection and retry policy of a single exchange.

    Parameters
    ----------
    retries : int
        Retries after a failed attempt or a transient HTTP status.
    retry_delay : float
        Seconds to wait between attempts.
    keepalive : float | None
        TCP keepalive idle time in seconds.
    connect_timeout : float | None
        Seconds allowed to establish the connection.
    max_time : float | None
        Read/write/pool timeout in seconds, ``None`` for no limit.
    tcp_nodelay : bool
        Disable Nagle's algorithm on the socket.
    no_buffer : bool
        Deliver streamed chunks as they arrive instead of after the body is read.
    compressed : bool
        Accept compressed responses.
    insecure : bool
        Skip TLS certificate verification.
    proxy : str | None
        Proxy URL.
    headers : tuple[tuple[str, str], ...]
        Extra request headers.
    """

    retries: int = 0
    retry_delay: float = 0.0
    keepalive: float | None = None
    connect_timeout: float | None = None
    max_time: float | None = None
    tcp_nodelay: bool = False
    no_buffer: bool = False
    compressed: bool = True
    insecure: bool = False
    proxy: str | None = None
    headers: tuple[tuple[str, str], ...] = ()


_BOOLEAN_FLAGS: dict[str, tuple[str, bool]] = {
    "--tcp-nodelay": ("tcp_nodelay", True),
    "--no-buffer": ("no_buffer", True),
    "-N": ("no_buffer", True),
    "--compressed": ("compressed", True),
    "--insecure": ("insecure", True),
    "-k": ("insecure", True),
}

_VALUE_FLAGS: dict[str, tuple[str, t.Callable[[str], t.Any]]] = {
    "--retry": ("retries", int),
    "--retry-delay": ("retry_delay", float),
    "--keepalive-time": ("keepalive", float),
    "--connect-timeout": ("connect_timeout", float),
    "--max-time": ("max_time", float),
    "-m": ("max_time", float),
    "--proxy": ("proxy", str),
    "-x": ("proxy", str),
}

_HEADER_FLAGS = {"--header", "-H"}


def _parse_header(*, value: str) -> tuple[str, str] | None:
    name, separator, header_value = value.partition(":")
    if not separator or not name.strip():
        log.warning(event="Ignored malformed header flag", value=value)
        return None
    return name.strip(), header_value.strip()


def parse_transport_flags(
    flags: t.Sequence[str],
    *,
    base: TransportConfig | None = None,
) -> TransportConfig:
    """
    Build a transport configuration from curl-style flags.

    Parameters
    ----------
    flags : typing.Sequence[str]
        Ordered flags, e.g. ``["--retry", "3", "--no-buffer"]``. Later flags
        override earlier ones; ``--flag=value`` is accepted too.
    base : TransportConfig | None, optional
        Configuration the flags are applied on.

    Returns
    -------
    TransportConfig
        Resulting configuration.
    """
    changes: dict[str, t.Any] = {}
    headers = list((base or TransportConfig()).headers)
    tokens = list(flags)
    index = 0
    while index < len(tokens):
        token = tokens[index]
        index += 1
        inline_value: str | None = None
        if token.startswith("--") and "=" in token:
            token, inline_value = token.split("=", 1)

        if token in _BOOLEAN_FLAGS:
            name, value = _BOOLEAN_FLAGS[token]
            changes[name] = value
            continue

        if token in _VALUE_FLAGS or token in _HEADER_FLAGS:
            if inline_value is None:
                if index >= len(tokens):
                    log.warning(event="Ignored transport flag without value", flag=token)
                    continue
                inline_value = tokens[index]
                index += 1
            if token in _HEADER_FLAGS:
                header = _parse_header(value=inline_value)
                if header is not None:
                    headers.append(header)
                continue
            name, convert = _VALUE_FLAGS[token]
            try:
                changes[name] = convert(inline_value)
            except ValueError:
                log.warning(
                    event="Ignored invalid transport flag value",
                    flag=token,
                    value=inline_value,
                )
            continue

        log.warning(event="Ignored unsupported transport flag", flag=token)

    changes["headers"] = tuple(headers)
    return dataclasses.replace(base or TransportConfig(), **changes)


def config_to_flags(config: TransportConfig) -> list[str]:
    """
    Render a configuration back into curl-style flags, for debug output.
    """
    flags = [
        "--retry",
        str(object=config.retries),
        "--retry-delay",
        f"{config.retry_delay:g}",
    ]
    if config.keepalive is not None:
        flags += ["--keepalive-time", f"{config.keepalive:g}"]
    if config.connect_timeout is not None:
        flags += ["--connect-timeout", f"{config.connect_timeout:g}"]
    if config.max_time is not None:
        flags += ["--max-time", f"{config.max_time:g}"]
    if config.tcp_nodelay:
        flags.append("--tcp-nodelay")
    if config.no_buffer:
        flags.append("--no-buffer")
    if config.compressed:
        flags.append("--compressed")
    if config.insecure:
        flags.append("--insecure")
    if config.proxy:
        flags += ["--proxy", config.proxy]
    for name, _ in config.headers:
        flags += ["--header", f"{name}: ***"]
    return flags


@dataclass(frozen=True)
class TransportRequest:
    """
    Fully resolved HTTP exchange handed to the transport.

    Parameters
    ----------
    method : str
        HTTP method.
    url : str
        Target URL.
    headers : dict[str, str]
        Request headers.
    body_path : Path | None
        File holding the request body.
    stream : bool
        Deliver the response as chunks.
    config : TransportConfig
        Connection and retry policy.
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body_path: Path | None = None
    stream: bool = False
    config: TransportConfig = field(default_factory=TransportConfig)

    def describe(self) -> tuple[str, ...]:
        """Curl-like argument list, with header values masked."""
        args = ["-X", self.method.upper(), self.url]
        for name in mask_headers(headers=self.headers):
            args += ["-H", f"{name}: ***"]
        if self.body_path is not None:
            args += ["-d", f"@{self.body_path.as_posix()}"]
        return tuple(args + config_to_flags(config=self.config))


@dataclass(frozen=True)
class TransportResponse:
    """
    Terminal response of an exchange.

    ``body`` is empty for streaming requests, whose content was delivered as chunks.
    """

    status_code: int
    headers: dict[str, str]
    body: str = ""

    @property
    def is_error(self) -> bool:
        return self.status_code >= 400

    def json(self) -> t.Any:
        return json.loads(self.body)


@dataclass(frozen=True)
class ChunkReceived:
    data: str


@dataclass(frozen=True)
class ResponseCompleted:
    response: TransportResponse


@dataclass(frozen=True)
class TransportFailed:
    error: TransportError


TransportEvent = ChunkReceived | ResponseCompleted | TransportFailed


class TransportSink(t.Protocol):
    """
    Consumer of the events of one exchange.
    """

    def on_event(self, event: TransportEvent) -> None: ...

    def on_aborted(self, error: BaseException) -> None:
        """Called once or more for an exchange stopped early; must be idempotent."""
        ...


class RequestHandle:
    """
    Cancellable reference to an in-flight exchange.

    Parameters
    ----------
    task : asyncio.Task[None]
        Task pumping transport events into the request sink.
    request : TransportRequest
        Exchange being executed.
    """

    def __init__(self, *, task: asyncio.Task[None], request: TransportRequest) -> None:
        self._task = task
        self._request = request

    @property
    def args(self) -> tuple[str, ...]:
        return self._request.describe()

    def cancel(self) -> bool:
        """
        Stop the exchange. Safe to call repeatedly and after completion.

        Returns
        -------
        bool
            ``True`` if a cancellation was requested by this call.
        """
        if self._task.done():
            return False
        return self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def wait(self) -> None:
        """
        Wait until the exchange and its terminal handling have finished.

        Raises any error raised by a request hook or callback; a cancelled
        exchange returns normally.
        """
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


def _socket_options(*, config: TransportConfig) -> list[tuple[int, int, int]]:
    options: list[tuple[int, int, int]] = []
    if config.tcp_nodelay:
        options.append((socket.IPPROTO_TCP, socket.TCP_NODELAY, 1))
    if config.keepalive is not None:
        options.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))
        if hasattr(socket, "TCP_KEEPIDLE"):
            options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, max(1, int(config.keepalive))))
    return options


def default_client_factory(config: TransportConfig) -> httpx.AsyncClient:
    """
    Create the ``httpx.AsyncClient`` used for one exchange.

    Parameters
    ----------
    config : TransportConfig
        Connection policy.

    Returns
    -------
    httpx.AsyncClient
        Configured client.
    """
    transport = httpx.AsyncHTTPTransport(
        verify=not config.insecure,
        proxy=config.proxy,
        socket_options=_socket_options(config=config) or None,
    )
    return httpx.AsyncClient(
        transport=transport,
        timeout=httpx.Timeout(config.max_time, connect=config.connect_timeout),
    )


class Transport:
    """
    Execute ``TransportRequest`` objects, buffered or streaming.

    Notes
    -----
    Connection failures, read failures of buffered responses and the statuses
    in ``RETRYABLE_STATUS_CODES`` are retried according to
    ``TransportConfig.retries`` and ``retry_delay``. HTTP error statuses left
    after the last attempt are returned as ordinary responses.
    """

    def __init__(
        self,
        client_factory: t.Callable[[TransportConfig], httpx.AsyncClient] | None = None,
    ) -> None:
        self._client_factory = client_factory or default_client_factory

    def _build_headers(self, *, request: TransportRequest, has_body: bool) -> httpx.Headers:
        headers = httpx.Headers(request.headers)
        for name, value in request.config.headers:
            headers[name] = value
        if not request.config.compressed and "accept-encoding" not in headers:
            headers["Accept-Encoding"] = "identity"
        if has_body and "content-type" not in headers:
            headers["Content-Type"] = "application/json"
        return headers

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = t.cast(Future, retry_state.outcome)
        if outcome.failed:
            log.warning(
                event="Retrying request",
                attempt=retry_state.attempt_number,
                error=str(object=outcome.exception()),
            )
        else:
            log.warning(
                event="Retrying request",
                attempt=retry_state.attempt_number,
                status_code=outcome.result().status_code,
            )

    async def _open(
        self,
        *,
        client: httpx.AsyncClient,
        http_request: httpx.Request,
        request: TransportRequest,
    ) -> httpx.Response:
        """
        Send the request, retrying transport errors and transient HTTP statuses.

        When retries run out on a transient status, the last response is
        returned like any other.

        Parameters
        ----------
        client : httpx.AsyncClient
            Client executing the exchange.
        http_request : httpx.Request
            Built request.
        request : TransportRequest
            Exchange description.

        Returns
        -------
        httpx.Response
            Open response; already read unless streaming unbuffered.
        """
        config = request.config
        read_eagerly = not (request.stream and config.no_buffer)
        response: httpx.Response | None = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(0, config.retries) + 1),
            wait=wait_fixed(max(0.0, config.retry_delay)),
            retry=retry_if_exception_type(httpx.TransportError) | retry_if_result(_is_transient),
            before_sleep=self._log_retry,
            retry_error_callback=_last_outcome,
        ):
            with attempt:
                response = await client.send(http_request, stream=True)
                # Transient error bodies are read so a discarded response is closed.
                if read_eagerly or _is_transient(response):
                    try:
                        await response.aread()
                    finally:
                        await response.aclose()
            if not t.cast(Future, attempt.retry_state.outcome).failed:
                attempt.retry_state.set_result(response)
        return t.cast(httpx.Response, response)

    async def events(self, request: TransportRequest) -> t.AsyncIterator[TransportEvent]:
        """
        Execute a request as a stream of transport events.

        Parameters
        ----------
        request : TransportRequest
            Exchange to execute.

        Yields
        ------
        TransportEvent
            Chunks (streaming only) then one terminal event.
        """
        content = request.body_path.read_bytes() if request.body_path is not None else None
        log.debug(
            event="Sending request",
            method=request.method.upper(),
            url=request.url,
            headers=mask_headers(headers=request.headers),
            stream=request.stream,
            bytes=len(content) if content else 0,
        )

        async with self._client_factory(request.config) as client:
            try:
                http_request = client.build_request(
                    method=request.method.upper(),
                    url=request.url,
                    headers=self._build_headers(request=request, has_body=content is not None),
                    content=content,
                )
                response = await self._open(client=client, http_request=http_request, request=request)
            except _REQUEST_ERRORS as error:
                yield TransportFailed(error=self._failure(request=request, error=error))
                return

            try:
                if request.stream:
                    if response.is_closed:
                        lines = response.text.splitlines()
                        for line in lines:
                            yield ChunkReceived(data=line)
                    else:
                        async for line in response.aiter_lines():
                            yield ChunkReceived(data=line)
                    body = ""
                else:
                    body = response.text
            except httpx.RequestError as error:
                yield TransportFailed(error=self._failure(request=request, error=error))
                return
            finally:
                await response.aclose()

            log.debug(
                event="Received response",
                method=request.method.upper(),
                url=request.url,
                status_code=response.status_code,
            )
            yield ResponseCompleted(
                response=TransportResponse(
                    status_code=response.status_code,
                    headers=dict(response.headers),
                    body=body,
                )
            )

    def _failure(self, *, request: TransportRequest, error: Exception) -> TransportError:
        log.error(
            event="Request failed",
            method=request.method.upper(),
            url=request.url,
            error=str(object=error) or type(error).__name__,
        )
        failure = TransportError(
            str(object=error) or type(error).__name__,
            url=request.url,
            method=request.method.upper(),
        )
        failure.__cause__ = error
        return failure

    async def _pump(self, *, request: TransportRequest, sink: TransportSink) -> None:
        try:
            async with aclosing(self.events(request)) as events:
                async for event in events:
                    sink.on_event(event)
        except BaseException as error:
            sink.on_aborted(error)
            raise

    def send(self, request: TransportRequest, sink: TransportSink) -> RequestHandle:
        """
        Start an exchange on the running loop.

        Parameters
        ----------
        request : TransportRequest
            Exchange to execute.
        sink : TransportSink
            Receives the transport events.

        Returns
        -------
        RequestHandle
            Handle of the exchange.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self._pump(request=request, sink=sink),
            name=f"llmrelay_request_{uuid.uuid4()}",
        )

        # A task cancelled before its first step never enters _pump.
        def _on_done(finished: asyncio.Task[None]) -> None:
            if finished.cancelled():
                sink.on_aborted(asyncio.CancelledError())
            else:
                # Retrieved here, the sink already logged it; wait() still raises it.
                finished.exception()

        task.add_done_callback(_on_done)
        return RequestHandle(task=task, request=request)
