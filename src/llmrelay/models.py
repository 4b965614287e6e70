import typing as t
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field

from llmrelay.status import RequestStatus


class Payload(BaseModel):
    model_config = ConfigDict(extra="allow")

    messages: list[dict[str, t.Any]] = Field(default_factory=list)
    tools: list[dict[str, t.Any]] | None = None


class AdapterSummary(BaseModel):
    name: str
    formatted_name: str | None = None
    model: str = ""


class RequestOptions(BaseModel):
    """
    Per-request options, mutated by the client and sent with every lifecycle event.

    Callers may attach extra keys; they travel with the event payload.
    """

    model_config = ConfigDict(extra="allow", validate_assignment=True)

    silent: bool = Field(default=False, description="suppress all lifecycle events")
    status: RequestStatus | None = Field(
        default=None, description="terminal status, set when the request finishes"
    )
    id: int | None = Field(default=None, description="request identifier, set on dispatch")
    event: str | None = Field(
        default=None, description="suffix appended to lifecycle event names"
    )
    adapter: AdapterSummary | None = Field(
        default=None, description="summary of the adapter serving the request"
    )


@dataclass
class RequestActions:
    """
    Caller hooks for a request.

    Parameters
    ----------
    callback : typing.Callable[[typing.Any, typing.Any], typing.Any]
        Called as ``callback(error, chunk)``: once with the full response for a
        buffered request, once per chunk for a streaming request, or once with
        a ``TransportError`` when the exchange fails.
    done : typing.Callable[[], typing.Any] | None
        Called once when the request completes without a transport failure.
    """

    callback: t.Callable[[t.Any, t.Any], t.Any]
    done: t.Callable[[], t.Any] | None = None
