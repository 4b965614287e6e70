import asyncio
import json
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version
from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError
from rich import print
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from llmrelay.adapters import Adapter, load_adapter
from llmrelay.cli.callbacks import (
    adapter_reference_callback,
    load_file_callback,
    log_level_callback,
)
from llmrelay.client import Client
from llmrelay.config import RelaySettings
from llmrelay.events import ALL_EVENTS, EventBus
from llmrelay.models import Payload, RequestActions, RequestOptions
from llmrelay.transport import TransportResponse
from llmrelay.utils.files import read_text_file
from llmrelay.utils.logging import setup_logging

app = typer.Typer(no_args_is_help=True)

console = Console()
err_console = Console(stderr=True)


def resolve_adapter(reference: str) -> Adapter:
    try:
        return load_adapter(reference)
    except (ImportError, AttributeError, TypeError, ValueError, ValidationError) as e:
        raise typer.BadParameter(message=f"could not load adapter '{reference}': {e}") from e


def read_payload(path: Path) -> Payload:
    try:
        return Payload.model_validate(json.loads(read_text_file(file_path=path)))
    except (json.JSONDecodeError, ValidationError) as e:
        raise typer.BadParameter(message=f"invalid payload file '{path.as_posix()}': {e}") from e


def print_event(event: str, data: Any) -> None:
    if isinstance(data, RequestOptions):
        status = f" [green]{data.status}[/green]" if data.status else ""
        err_console.print(f"[dim]{event}[/dim] id={data.id}{status}")


def print_response(response: TransportResponse) -> None:
    title = f"HTTP {response.status_code}"
    try:
        console.print(Panel.fit(Text(json.dumps(response.json(), indent=2)), title=title))
    except ValueError:
        console.print(Panel.fit(Text(response.body), title=title))


async def run_request(
    *,
    client: Client,
    payload: Payload,
    opts: RequestOptions,
) -> list[Exception] | None:
    """
    Send one request and wait for its terminal handling.

    Returns
    -------
    list[Exception] | None
        Errors delivered to the request callback, ``None`` if adapter setup failed.
    """
    errors: list[Exception] = []

    def callback(error: Any, chunk: Any) -> None:
        if error is not None:
            errors.append(error)
        elif isinstance(chunk, TransportResponse):
            print_response(chunk)
        elif chunk:
            console.print(chunk, markup=False, highlight=False, soft_wrap=True)

    handle = client.request(payload, RequestActions(callback=callback), opts)
    if handle is None:
        return None
    await handle.wait()
    return errors


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Log level, one of TRACE, DEBUG, INFO, WARN, ERROR. Defaults to LLMRELAY_LOG_LEVEL",
            callback=log_level_callback,
        ),
    ] = None,
):
    """Send chat-completion requests through adapters"""
    settings = RelaySettings.from_env()
    if log_level is not None:
        settings = RelaySettings.model_validate({**settings.model_dump(), "log_level": log_level})
    setup_logging(level=settings.log_level)
    ctx.obj = settings


@app.command(name="body")
def show_body(
    ctx: typer.Context,
    adapter: Annotated[
        str,
        typer.Argument(
            help="Adapter .json file or 'module:attribute' reference",
            callback=adapter_reference_callback,
        ),
    ],
    payload: Annotated[
        Path,
        typer.Argument(help="JSON file with messages and optional tools", callback=load_file_callback),
    ],
):
    """Print the request body an adapter builds for a payload, without sending it"""
    client = Client(resolve_adapter(adapter), settings=ctx.obj)
    body = client.compose(read_payload(payload))
    if body is None:
        err_console.print("[red]Adapter setup failed[/red]")
        raise typer.Exit(1)
    console.print_json(data=body)


@app.command(name="request")
def send_request(
    ctx: typer.Context,
    adapter: Annotated[
        str,
        typer.Argument(
            help="Adapter .json file or 'module:attribute' reference",
            callback=adapter_reference_callback,
        ),
    ],
    payload: Annotated[
        Path,
        typer.Argument(help="JSON file with messages and optional tools", callback=load_file_callback),
    ],
    silent: Annotated[
        bool, typer.Option("--silent", help="Do not fire lifecycle events")
    ] = False,
    event: Annotated[
        str | None,
        typer.Option(help="Suffix of additional request-specific lifecycle events"),
    ] = None,
):
    """Send a payload through an adapter and print the response"""
    events = EventBus()
    events.subscribe(ALL_EVENTS, print_event)
    client = Client(resolve_adapter(adapter), settings=ctx.obj, events=events)
    errors = asyncio.run(
        run_request(
            client=client,
            payload=read_payload(payload),
            opts=RequestOptions(silent=silent, event=event),
        )
    )
    if errors is None:
        err_console.print("[red]Adapter setup failed[/red]")
        raise typer.Exit(1)
    if errors:
        for error in errors:
            err_console.print(str(object=error), style="red", markup=False, highlight=False)
        raise typer.Exit(1)


@app.command()
def version():
    """Get the version of the package"""
    try:
        typer.echo(package_version("llmrelay"))
    except PackageNotFoundError:
        print("[yellow]llmrelay is not installed[/yellow]")
        raise typer.Exit(1)
    raise typer.Exit()
