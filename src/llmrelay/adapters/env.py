"""
Environment-variable resolution for adapter fields.

Adapters declare an ``env`` mapping of placeholder names to value sources and
reference them as ``${name}`` inside their URL, headers, parameters or raw
transport flags. A source is resolved, in order, as:

- a callable, called with the adapter;
- ``cmd:<shell command>``, replaced by the command's stripped stdout;
- the name of a set environment variable, replaced by its value;
- ``schema.<path>``, replaced by the value found on the adapter schema;
- otherwise the literal string itself.
"""

from __future__ import annotations

import os
import re
import subprocess
import typing as t

import structlog

if t.TYPE_CHECKING:
    from llmrelay.adapters.base import Adapter

log = structlog.get_logger(__name__)

CMD_PREFIX = "cmd:"
SCHEMA_PREFIX = "schema."
_PLACEHOLDER = re.compile(r"\$\{([A-Za-z0-9_.\-]+)\}")

T = t.TypeVar("T")


def _run_command(*, command: str) -> str | None:
    """
    Run a shell command and capture its output.

    Parameters
    ----------
    command : str
        Command line executed through the shell.

    Returns
    -------
    str | None
        Stripped stdout, or ``None`` if the command failed.
    """
    try:
        completed = subprocess.run(
            command,
            shell=True,
            capture_output=True,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as error:
        log.error(event="Env command failed", command=command, error=str(object=error))
        return None
    return completed.stdout.strip()


def _lookup_schema_path(*, adapter: "Adapter", path: str) -> t.Any:
    """
    Walk a dotted path below the adapter schema.

    Parameters
    ----------
    adapter : Adapter
        Adapter owning the schema.
    path : str
        Path relative to the schema, e.g. ``model.default``.

    Returns
    -------
    typing.Any
        Value found, with zero-argument callables evaluated, or ``None``.
    """
    current: t.Any = adapter.adapter_schema
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, t.Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    if callable(current):
        current = current()
    return current


def resolve_env_value(*, adapter: "Adapter", source: t.Any) -> str | None:
    """
    Resolve a single ``env`` entry of an adapter.

    Parameters
    ----------
    adapter : Adapter
        Adapter the value belongs to.
    source : typing.Any
        Declared value source.

    Returns
    -------
    str | None
        Resolved value, or ``None`` when it could not be resolved.
    """
    if callable(source):
        value = source(adapter)
        return None if value is None else str(object=value)
    if not isinstance(source, str):
        return None if source is None else str(object=source)
    if source.startswith(CMD_PREFIX):
        return _run_command(command=source[len(CMD_PREFIX) :].strip())
    env_value = os.getenv(source)
    if env_value is not None:
        return env_value
    if source.startswith(SCHEMA_PREFIX):
        value = _lookup_schema_path(adapter=adapter, path=source[len(SCHEMA_PREFIX) :])
        return None if value is None else str(object=value)
    return source


def get_env_vars(*, adapter: "Adapter") -> dict[str, str]:
    """
    Resolve every ``env`` entry of an adapter.

    Parameters
    ----------
    adapter : Adapter
        Adapter to resolve.

    Returns
    -------
    dict[str, str]
        Placeholder name to resolved value. Unresolvable entries are omitted.
    """
    resolved: dict[str, str] = {}
    for name, source in adapter.env.items():
        value = resolve_env_value(adapter=adapter, source=source)
        if value is None:
            log.warning(event="Env variable not resolved", adapter=adapter.name, variable=name)
            continue
        resolved[name] = value
    log.debug(
        event="Resolved adapter env variables",
        adapter=adapter.name,
        variables=list(resolved.keys()),
    )
    return resolved


def replace_placeholders(*, text: str, env: t.Mapping[str, str]) -> str:
    """
    Substitute ``${name}`` placeholders in a string.

    Unknown placeholders are left untouched.
    """

    def _sub(match: re.Match[str]) -> str:
        return env.get(match.group(1), match.group(0))

    return _PLACEHOLDER.sub(_sub, text)


def set_env_vars(value: T, *, env: t.Mapping[str, str]) -> T:
    """
    Return a copy of ``value`` with placeholders replaced.

    Parameters
    ----------
    value : T
        String, mapping or sequence (nested structures are walked).
    env : typing.Mapping[str, str]
        Resolved env variables.

    Returns
    -------
    T
        Value of the same shape with placeholders substituted.
    """
    if isinstance(value, str):
        return t.cast(T, replace_placeholders(text=value, env=env))
    if isinstance(value, t.Mapping):
        return t.cast(T, {key: set_env_vars(item, env=env) for key, item in value.items()})
    if isinstance(value, list):
        return t.cast(T, [set_env_vars(item, env=env) for item in value])
    if isinstance(value, tuple):
        return t.cast(T, tuple(set_env_vars(item, env=env) for item in value))
    return value
