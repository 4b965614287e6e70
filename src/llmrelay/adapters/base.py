from __future__ import annotations

import typing as t

import structlog
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from llmrelay.adapters import env as env_utils
from llmrelay.models import AdapterSummary

log = structlog.get_logger(__name__)

Handler = t.Callable[..., t.Any]


class AdapterOpts(BaseModel):
    model_config = ConfigDict(extra="allow")

    stream: bool = Field(default=False, description="stream the response chunk by chunk")
    compress: bool = Field(
        default=False, description="keep response compression enabled while streaming"
    )
    method: str = Field(default="post", description="HTTP method, case-insensitive")


class ModelSchema(BaseModel):
    model_config = ConfigDict(extra="allow", arbitrary_types_allowed=True)

    default: str | t.Callable[[], str] | None = None


class AdapterSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    model: ModelSchema = Field(default_factory=ModelSchema)


class AdapterHandlers(BaseModel):
    """
    Optional transformation hooks of an adapter.

    Every hook receives the per-request adapter copy as its first argument.

    Attributes
    ----------
    setup : Handler | None
        ``setup(adapter) -> bool``; a falsy result aborts the request.
    form_messages : Handler | None
        ``form_messages(adapter, messages) -> mapping``.
    form_tools : Handler | None
        ``form_tools(adapter, tools) -> mapping``.
    form_parameters : Handler | None
        ``form_parameters(adapter, params, messages, tools) -> mapping``.
    set_body : Handler | None
        ``set_body(adapter, payload) -> mapping``, merged last.
    on_exit : Handler | None
        ``on_exit(adapter, response)`` once the exchange completes.
    teardown : Handler | None
        ``teardown(adapter)`` after ``on_exit``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    setup: Handler | None = None
    form_messages: Handler | None = None
    form_tools: Handler | None = None
    form_parameters: Handler | None = None
    set_body: Handler | None = None
    on_exit: Handler | None = None
    teardown: Handler | None = None


class Adapter(BaseModel):
    """
    Provider-specific configuration turning a generic payload into a wire request.

    The client never mutates the caller's adapter: each request works on a
    deep copy, which also holds the env variables resolved for that request.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        populate_by_name=True,
        extra="allow",
    )

    name: str = Field(description="machine-friendly adapter name")
    formatted_name: str | None = Field(default=None, description="display name")
    url: str = Field(description="endpoint URL, may contain ${var} placeholders")
    env: dict[str, str | t.Callable[..., t.Any]] = Field(
        default_factory=dict, description="placeholder name to value source"
    )
    headers: dict[str, str] = Field(default_factory=dict)
    parameters: dict[str, t.Any] = Field(default_factory=dict)
    opts: AdapterOpts = Field(default_factory=AdapterOpts)
    raw: list[str] = Field(default_factory=list, description="extra curl-style transport flags")
    body: dict[str, t.Any] = Field(default_factory=dict, description="static top-level body keys")
    handlers: AdapterHandlers = Field(default_factory=AdapterHandlers)
    adapter_schema: AdapterSchema = Field(default_factory=AdapterSchema, alias="schema")

    _env_replaced: dict[str, str] = PrivateAttr(default_factory=dict)

    @property
    def env_replaced(self) -> dict[str, str]:
        return dict(self._env_replaced)

    def get_env_vars(self) -> dict[str, str]:
        """
        Resolve the adapter ``env`` block and keep the values on this instance.

        Returns
        -------
        dict[str, str]
            Resolved placeholder values.
        """
        self._env_replaced = env_utils.get_env_vars(adapter=self)
        return self.env_replaced

    def set_env_vars(self, value: env_utils.T) -> env_utils.T:
        """
        Substitute resolved env variables into a field value.

        Parameters
        ----------
        value : T
            String, mapping or list to resolve.

        Returns
        -------
        T
            Resolved copy of ``value``.
        """
        return env_utils.set_env_vars(value, env=self._env_replaced)

    def resolve_model(self) -> str:
        default = self.adapter_schema.model.default
        if callable(default):
            default = default()
        return default or ""

    def summary(self) -> AdapterSummary:
        return AdapterSummary(
            name=self.name,
            formatted_name=self.formatted_name,
            model=self.resolve_model(),
        )
