from pathlib import Path

import typer
from pydantic import ValidationError

from llmrelay.config import RelaySettings


def load_file_callback(ctx: typer.Context, value: Path):
    if ctx.resilient_parsing:
        return
    if not value.exists():
        raise typer.BadParameter(
            message=f"file at path: '{value.as_posix()}' does not exist",
        )
    return value


def adapter_reference_callback(ctx: typer.Context, value: str):
    if ctx.resilient_parsing:
        return
    if value.endswith(".json"):
        if not Path(value).exists():
            raise typer.BadParameter(message=f"adapter file: '{value}' does not exist")
    elif ":" not in value:
        raise typer.BadParameter(
            message=f"'{value}' is neither a .json adapter file nor a 'module:attribute' reference",
        )
    return value


def log_level_callback(ctx: typer.Context, value: str | None):
    if ctx.resilient_parsing or value is None:
        return value
    try:
        RelaySettings(log_level=value)
    except ValidationError as e:
        raise typer.BadParameter(
            message=f"'{value}' is not a valid log level, supported levels are: TRACE, DEBUG, INFO, WARN, ERROR",
            param_hint="--log-level",
        ) from e
    return value
