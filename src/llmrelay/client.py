"""
Request orchestrator.

``Client.request`` copies the adapter, runs its ``setup`` hook, composes and
persists the wire body, dispatches it through the transport and wires the
transport events to the caller's actions and to the lifecycle events
``RequestStarted``, ``RequestStreaming`` and ``RequestFinished``.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import typing as t

import structlog

from llmrelay.adapters.base import Adapter
from llmrelay.artifact import BodyArtifact
from llmrelay.composer import compose_body
from llmrelay.config import RelaySettings
from llmrelay.events import EventBus, default_bus
from llmrelay.exceptions import SetupError, TransportError
from llmrelay.models import Payload, RequestActions, RequestOptions
from llmrelay.status import RequestEvent, RequestState, RequestStatus
from llmrelay.transport import (
    ChunkReceived,
    RequestHandle,
    ResponseCompleted,
    Transport,
    TransportConfig,
    TransportEvent,
    TransportFailed,
    TransportRequest,
    TransportResponse,
    parse_transport_flags,
)
from llmrelay.utils.logging import logging_context, mask_headers, wrap_callback

log = structlog.get_logger(__name__)

RETRY_COUNT = 3
RETRY_DELAY_SECONDS = 1
KEEPALIVE_SECONDS = 60
CONNECT_TIMEOUT_SECONDS = 10

_request_ids = itertools.count(start=1)


def next_request_id() -> int:
    """Process-wide monotonic request id; never repeats within a process."""
    return next(_request_ids)


class RequestLifecycle:
    """
    State machine of one dispatched request.

    Receives the transport events of the request and turns them into caller
    callbacks, adapter hooks, lifecycle events and artifact cleanup.

    Parameters
    ----------
    adapter : Adapter
        Per-request adapter copy.
    actions : RequestActions
        Caller hooks.
    opts : RequestOptions
        Options sent with every lifecycle event.
    artifact : BodyArtifact
        Body file owned by the request.
    events : EventBus
        Bus receiving lifecycle events.
    settings : RelaySettings
        Runtime settings, for the artifact retention policy.
    event_suffix : str | None
        Suffix of the additional, request-specific event names.
    """

    def __init__(
        self,
        *,
        adapter: Adapter,
        actions: RequestActions,
        opts: RequestOptions,
        artifact: BodyArtifact,
        events: EventBus,
        settings: RelaySettings,
        event_suffix: str | None = None,
    ) -> None:
        self._adapter = adapter
        self._actions = actions
        self._callback = wrap_callback(callback=actions.callback, message="Response error")
        self._opts = opts
        self._artifact = artifact
        self._events = events
        self._settings = settings
        self._event_suffix = event_suffix
        self._stream = adapter.opts.stream
        self._finished = False
        self._torn_down = False
        self.state = RequestState.IDLE

    def _fire(self, event: RequestEvent) -> None:
        if self._opts.silent:
            return
        self._events.fire(str(object=event), self._opts)
        if self._event_suffix:
            self._events.fire(f"{event}{self._event_suffix}", self._opts)

    def dispatched(self) -> None:
        self.state = RequestState.IN_FLIGHT

    def started(self) -> None:
        self._fire(RequestEvent.STARTED)

    def on_event(self, event: TransportEvent) -> None:
        if self._finished:
            log.debug(
                event="Ignored transport event after finish",
                request_id=self._opts.id,
                event_type=type(event).__name__,
            )
            return
        if isinstance(event, ChunkReceived):
            self._on_chunk(data=event.data)
        elif isinstance(event, ResponseCompleted):
            self._on_complete(response=event.response)
        elif isinstance(event, TransportFailed):
            self._on_failure(error=event.error)

    def _on_chunk(self, *, data: str) -> None:
        if data:
            log.debug(event="Output data", request_id=self._opts.id, chunk=data)
        if self.state == RequestState.IN_FLIGHT:
            self.state = RequestState.STREAMING
            self._fire(RequestEvent.STREAMING)
        self._callback(None, data)

    def _run_exit_hooks(self, *, response: TransportResponse) -> None:
        handlers = self._adapter.handlers
        if not self._stream and response.body:
            log.debug(
                event="Output data",
                request_id=self._opts.id,
                status_code=response.status_code,
                bytes=len(response.body),
            )
            self._callback(None, response)
        if handlers.on_exit is not None:
            handlers.on_exit(self._adapter, response)
        self._teardown()
        if self._actions.done is not None:
            self._actions.done()

    def _teardown(self) -> None:
        if self._torn_down:
            return
        self._torn_down = True
        if self._adapter.handlers.teardown is not None:
            self._adapter.handlers.teardown(self._adapter)

    def _finish(
        self,
        *,
        status: RequestStatus,
        state: RequestState,
        cleanup: bool = True,
    ) -> None:
        self._opts.status = status
        self.state = state
        try:
            self._fire(RequestEvent.FINISHED)
        finally:
            if cleanup:
                self.cleanup()

    def _on_complete(self, *, response: TransportResponse) -> None:
        self._finished = True
        try:
            self._run_exit_hooks(response=response)
        except Exception:
            try:
                self._teardown()
            finally:
                self._finish(status=RequestStatus.ERROR, state=RequestState.ERROR)
            raise
        if response.is_error:
            self._finish(status=RequestStatus.ERROR, state=RequestState.ERROR)
        else:
            self._finish(status=RequestStatus.SUCCESS, state=RequestState.DONE)

    def _on_failure(self, *, error: TransportError) -> None:
        # No on_exit, teardown or cleanup on this path.
        self._finished = True
        try:
            self._actions.callback(error, None)
        finally:
            self._finish(status=RequestStatus.ERROR, state=RequestState.ERROR, cleanup=False)

    def on_aborted(self, error: BaseException) -> None:
        """
        Finish a request that stopped without a terminal transport event.

        Parameters
        ----------
        error : BaseException
            ``asyncio.CancelledError`` when the handle was cancelled, otherwise
            the error raised by a hook or callback.
        """
        if self._finished:
            return
        self._finished = True
        if isinstance(error, asyncio.CancelledError):
            status, state = RequestStatus.CANCELLED, RequestState.CANCELLED
            log.info(event="Request cancelled", request_id=self._opts.id, adapter=self._adapter.name)
        else:
            status, state = RequestStatus.ERROR, RequestState.ERROR
            log.error(
                event="Request aborted",
                request_id=self._opts.id,
                adapter=self._adapter.name,
                error=str(object=error),
            )
        try:
            self._teardown()
        finally:
            self._finish(status=status, state=state)

    def cleanup(self) -> None:
        self._artifact.cleanup(log_level=self._settings.log_level, status=self._opts.status)


class Client:
    """
    Send chat-completion payloads through an adapter.

    Parameters
    ----------
    adapter : Adapter
        Adapter definition; never mutated, each request works on a deep copy.
    transport : Transport | None, optional
        Transport driver, defaults to an httpx-backed ``Transport``.
    events : EventBus | None, optional
        Bus receiving lifecycle events, defaults to the process-wide bus.
    settings : RelaySettings | None, optional
        Runtime settings, defaults to ``RelaySettings.from_env()``.
    encode : typing.Callable[[dict[str, typing.Any]], str] | None, optional
        Body serializer, defaults to ``json.dumps``.
    id_factory : typing.Callable[[], int] | None, optional
        Request id generator, defaults to a process-wide counter.
    user_args : dict[str, typing.Any] | None, optional
        Client-level options; ``event`` sets the default event suffix.
    """

    def __init__(
        self,
        adapter: Adapter,
        *,
        transport: Transport | None = None,
        events: EventBus | None = None,
        settings: RelaySettings | None = None,
        encode: t.Callable[[dict[str, t.Any]], str] | None = None,
        id_factory: t.Callable[[], int] | None = None,
        user_args: dict[str, t.Any] | None = None,
    ) -> None:
        self.adapter = adapter
        self.transport = transport or Transport()
        self.events = events or default_bus
        self.settings = settings or RelaySettings.from_env()
        self.encode = encode or json.dumps
        self.id_factory = id_factory or next_request_id
        self.user_args = user_args or {}

    def _setup(self, *, adapter: Adapter) -> None:
        """
        Run the adapter ``setup`` hook.

        Raises
        ------
        SetupError
            If the hook returns a falsy value or raises.
        """
        setup = adapter.handlers.setup
        if setup is None:
            return
        try:
            ok = setup(adapter)
        except Exception as e:
            raise SetupError(f"Setup of adapter '{adapter.name}' raised: {e}") from e
        if not ok:
            raise SetupError(f"Failed to setup adapter '{adapter.name}'")

    def _prepare(
        self,
        *,
        payload: Payload | t.Mapping[str, t.Any],
    ) -> tuple[Adapter, dict[str, t.Any]] | None:
        if not isinstance(payload, Payload):
            payload = Payload.model_validate(payload)

        adapter = self.adapter.model_copy(deep=True)
        try:
            self._setup(adapter=adapter)
        except SetupError as error:
            log.error(event="Failed to setup adapter", adapter=adapter.name, error=str(object=error))
            return None

        adapter.get_env_vars()
        body = compose_body(adapter=adapter, payload=payload)
        log.debug(event="Final body components", adapter=adapter.name, keys=list(body.keys()))
        return adapter, body

    def compose(self, payload: Payload | t.Mapping[str, t.Any]) -> dict[str, t.Any] | None:
        """
        Build the wire body of a payload without sending it.

        Runs the adapter ``setup`` hook and env resolution on a fresh copy,
        exactly as ``request`` does; no artifact is written and no event fired.

        Parameters
        ----------
        payload : Payload | typing.Mapping[str, typing.Any]
            Messages and optional tools.

        Returns
        -------
        dict[str, typing.Any] | None
            Body components, or ``None`` if adapter setup failed.
        """
        prepared = self._prepare(payload=payload)
        if prepared is None:
            return None
        return prepared[1]

    def _build_transport_config(self, *, adapter: Adapter) -> TransportConfig:
        raw = [
            "--retry",
            str(object=RETRY_COUNT),
            "--retry-delay",
            str(object=RETRY_DELAY_SECONDS),
            "--keepalive-time",
            str(object=KEEPALIVE_SECONDS),
            "--connect-timeout",
            str(object=CONNECT_TIMEOUT_SECONDS),
        ]
        stream = adapter.opts.stream
        if stream:
            raw += ["--tcp-nodelay", "--no-buffer"]
        if adapter.raw:
            raw += adapter.set_env_vars(adapter.raw)

        base = TransportConfig(
            compressed=adapter.opts.compress if stream else True,
            insecure=self.settings.allow_insecure,
            proxy=self.settings.proxy,
        )
        return parse_transport_flags(raw, base=base)

    def request(
        self,
        payload: Payload | t.Mapping[str, t.Any],
        actions: RequestActions,
        opts: RequestOptions | t.Mapping[str, t.Any] | None = None,
    ) -> RequestHandle | None:
        """
        Send a payload through the adapter.

        Must be called from a running event loop.

        Parameters
        ----------
        payload : Payload | typing.Mapping[str, typing.Any]
            Messages and optional tools.
        actions : RequestActions
            Caller callback and optional ``done`` hook.
        opts : RequestOptions | typing.Mapping[str, typing.Any] | None, optional
            Per-request options; updated in place with id, adapter and status.

        Returns
        -------
        RequestHandle | None
            Handle of the in-flight request, or ``None`` if adapter setup failed.
        """
        if opts is None:
            opts = RequestOptions()
        elif not isinstance(opts, RequestOptions):
            opts = RequestOptions.model_validate(opts)

        prepared = self._prepare(payload=payload)
        if prepared is None:
            return None
        adapter, body = prepared
        summary = adapter.summary()

        artifact = BodyArtifact.create(
            content=self.encode(body),
            directory=self.settings.artifact_dir,
        )

        stream = adapter.opts.stream
        transport_request = TransportRequest(
            method=(adapter.opts.method or "post").upper(),
            url=adapter.set_env_vars(adapter.url),
            headers=adapter.set_env_vars(adapter.headers),
            body_path=artifact.path,
            stream=stream,
            config=self._build_transport_config(adapter=adapter),
        )

        lifecycle = RequestLifecycle(
            adapter=adapter,
            actions=actions,
            opts=opts,
            artifact=artifact,
            events=self.events,
            settings=self.settings,
            event_suffix=opts.event or self.user_args.get("event"),
        )
        request_id = self.id_factory()
        lifecycle.dispatched()
        # The request task inherits the bound context.
        with logging_context(request_id=request_id, adapter=adapter.name):
            handle = self.transport.send(transport_request, lifecycle)

        opts.id = request_id
        opts.adapter = summary
        lifecycle.started()

        log.debug(
            event="Request",
            request_id=opts.id,
            adapter=adapter.name,
            headers=mask_headers(headers=transport_request.headers),
            args=" ".join(handle.args),
        )
        return handle
