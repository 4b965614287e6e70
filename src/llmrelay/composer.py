"""
Assemble the wire body of a request from the adapter handlers.

Handler outputs are merged in a fixed order, later steps replacing keys
produced by earlier ones:

1. ``form_messages``
2. ``form_tools``
3. ``form_parameters`` (sees the ``tools`` key produced so far)
4. the adapter's static ``body``
5. ``set_body``
"""

from __future__ import annotations

import typing as t

import structlog

from llmrelay.adapters.base import Adapter
from llmrelay.models import Payload

log = structlog.get_logger(__name__)


def _merge(
    *,
    body: dict[str, t.Any],
    component: t.Any,
    step: str,
    adapter: Adapter,
) -> None:
    """
    Shallow-merge a handler result into the body.

    Parameters
    ----------
    body : dict[str, typing.Any]
        Body being built, updated in place.
    component : typing.Any
        Handler result; anything but a mapping is ignored.
    step : str
        Step name for logging.
    adapter : Adapter
        Adapter serving the request.
    """
    if not isinstance(component, t.Mapping):
        if component is not None:
            log.debug(
                event="Ignored non-mapping body component",
                adapter=adapter.name,
                step=step,
                component_type=type(component).__name__,
            )
        return
    body.update(component)
    log.debug(
        event="Merged body component",
        adapter=adapter.name,
        step=step,
        keys=list(component.keys()),
    )


def compose_body(*, adapter: Adapter, payload: Payload) -> dict[str, t.Any]:
    """
    Build the request body for a payload.

    Parameters
    ----------
    adapter : Adapter
        Per-request adapter copy, with env variables already resolved.
    payload : Payload
        Messages and tools to send.

    Returns
    -------
    dict[str, typing.Any]
        Body components, ready to be encoded.
    """
    handlers = adapter.handlers
    body: dict[str, t.Any] = {}

    if handlers.form_messages is not None:
        _merge(
            body=body,
            component=handlers.form_messages(adapter, payload.messages),
            step="form_messages",
            adapter=adapter,
        )

    if handlers.form_tools is not None:
        _merge(
            body=body,
            component=handlers.form_tools(adapter, payload.tools),
            step="form_tools",
            adapter=adapter,
        )

    if handlers.form_parameters is not None:
        base_parameters = adapter.set_env_vars(adapter.parameters) or {}
        _merge(
            body=body,
            component=handlers.form_parameters(
                adapter,
                base_parameters,
                payload.messages,
                body.get("tools"),
            ),
            step="form_parameters",
            adapter=adapter,
        )

    _merge(body=body, component=adapter.body, step="body", adapter=adapter)

    if handlers.set_body is not None:
        _merge(
            body=body,
            component=handlers.set_body(adapter, payload),
            step="set_body",
            adapter=adapter,
        )

    if "messages" not in body:
        log.warning(
            event="Request body is missing 'messages'",
            adapter=adapter.name,
            keys=list(body.keys()),
        )
    return body
