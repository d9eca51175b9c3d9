"""Command-line front end (Typer-based).

The CLI is the shipped "UI layer" on top of :class:`Engine`::

    togglesync devices                 list configured devices and topics
    togglesync watch                   stream the event log until Ctrl-C
    togglesync set light on            connect, switch one device, exit

Global options (``--log-level``, ``--log-format``, ``--env-file``,
``--version``) go before the command name.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, get_args

import typer
from pydantic import ValidationError

from togglesync import __version__
from togglesync._connection import ConnectionState
from togglesync._dispatcher import DispatchResult
from togglesync._engine import Engine
from togglesync._errors import TogglesyncError
from togglesync._events import LogEntry
from togglesync._logging import configure_logging
from togglesync._settings import LoggingSettings, Settings
from togglesync._state import DeviceChannel, format_switch_payload

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

# ---------------------------------------------------------------------------
# Allowed values (extracted from LoggingSettings Literal types)
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)


class SwitchState(StrEnum):
    ON = "on"
    OFF = "off"


@dataclass
class _CliState:
    """Options shared by every command, filled in by the callback."""

    env_file: str = ".env"
    log_level: str | None = None
    log_format: str | None = None

    def load_settings(
        self,
        *,
        broker: str | None = None,
        client_id: str | None = None,
    ) -> Settings:
        """Build settings from the env file plus CLI overrides."""
        try:
            settings = Settings(_env_file=self.env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            typer.echo(f"Configuration error: {exc}", err=True)
            raise typer.Exit(EXIT_CONFIG_ERROR) from exc

        updates: dict[str, str] = {}
        if broker is not None:
            updates["uri"] = broker
        if client_id is not None:
            updates["client_id"] = client_id
        if updates:
            settings.broker = settings.broker.model_copy(update=updates)

        if self.log_level is not None:
            settings.logging = settings.logging.model_copy(
                update={"level": self.log_level.upper()},
            )
        if self.log_format is not None:
            settings.logging = settings.logging.model_copy(
                update={"format": self.log_format.lower()},
            )
        return settings


BrokerOption = Annotated[
    str | None,
    typer.Option("--broker", "-b", help="Broker URI (overrides settings)."),
]
ClientIdOption = Annotated[
    str | None,
    typer.Option("--client-id", help="MQTT client id (overrides settings)."),
]


def _describe(channel: DeviceChannel) -> str:
    reported = (
        "unknown"
        if channel.reported_state is None
        else format_switch_payload(channel.reported_state)
    )
    return (
        f"{channel.name}: shown={format_switch_payload(channel.displayed_state)} "
        f"intended={format_switch_payload(channel.intended_state)} "
        f"reported={reported}"
    )


def _echo_entry(entry: LogEntry) -> None:
    typer.echo(entry.format())


def build_cli() -> typer.Typer:
    """Construct the ``togglesync`` Typer application."""
    cli = typer.Typer(
        help=f"togglesync v{__version__}: MQTT on/off device synchronization.",
    )

    @cli.callback(invoke_without_command=True)
    def main(
        ctx: typer.Context,
        version_flag: Annotated[
            bool | None,
            typer.Option(
                "--version",
                is_eager=True,
                help="Show version and exit.",
            ),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
    ) -> None:
        if version_flag:
            typer.echo(f"togglesync v{__version__}")
            raise typer.Exit()

        if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
            raise typer.BadParameter(
                f"Invalid log level '{log_level}'. "
                f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
                param_hint="'--log-level'",
            )

        if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
            raise typer.BadParameter(
                f"Invalid log format '{log_format}'. "
                f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
                param_hint="'--log-format'",
            )

        ctx.obj = _CliState(
            env_file=env_file,
            log_level=log_level,
            log_format=log_format,
        )

        if ctx.invoked_subcommand is None:
            typer.echo(ctx.get_help())
            raise typer.Exit()

    # -- devices ------------------------------------------------------------

    @cli.command()
    def devices(ctx: typer.Context) -> None:
        """List configured devices and their topics."""
        state: _CliState = ctx.obj
        settings = state.load_settings()
        for device in settings.devices:
            try:
                channel = DeviceChannel(name=device.name, topic_base=device.topic_base)
            except TogglesyncError as exc:
                typer.echo(f"{device.name}: {exc}", err=True)
                raise typer.Exit(EXIT_CONFIG_ERROR) from exc
            typer.echo(
                f"{channel.name}\t{channel.command_topic}\t{channel.status_topic}",
            )

    # -- watch --------------------------------------------------------------

    @cli.command()
    def watch(
        ctx: typer.Context,
        broker: BrokerOption = None,
        client_id: ClientIdOption = None,
    ) -> None:
        """Connect and print the event log and device states until Ctrl-C."""
        state: _CliState = ctx.obj
        settings = state.load_settings(broker=broker, client_id=client_id)
        configure_logging(settings.logging, version=__version__)

        engine = Engine(settings)
        engine.event_log.add_listener(_echo_entry)
        engine.connection.add_state_listener(
            lambda new_state: typer.echo(f"* {new_state}"),
        )
        engine.reconciler.add_listener(lambda channel: typer.echo(_describe(channel)))
        _run_or_exit(engine.run())

    # -- set ----------------------------------------------------------------

    @cli.command("set")
    def set_device(
        ctx: typer.Context,
        device: Annotated[str, typer.Argument(help="Device name, e.g. 'light'.")],
        switch: Annotated[SwitchState, typer.Argument(help="'on' or 'off'.")],
        broker: BrokerOption = None,
        client_id: ClientIdOption = None,
        timeout: Annotated[
            float,
            typer.Option("--timeout", help="Seconds to wait for the broker."),
        ] = 10.0,
    ) -> None:
        """Connect, switch one device on or off, and disconnect."""
        state: _CliState = ctx.obj
        settings = state.load_settings(broker=broker, client_id=client_id)
        configure_logging(settings.logging, version=__version__)

        code = _run_or_exit(
            _set_once(settings, device, switch is SwitchState.ON, timeout),
        )
        raise typer.Exit(code)

    return cli


async def _set_once(settings: Settings, device: str, on: bool, timeout: float) -> int:
    async with Engine(settings) as engine:
        engine.event_log.add_listener(_echo_entry)
        attempt = engine.connect()
        if attempt is not None:
            try:
                await asyncio.wait_for(attempt, timeout)
            except TimeoutError:
                typer.echo(f"Timed out after {timeout}s connecting", err=True)
                return EXIT_RUNTIME_ERROR
        if engine.connection.state is not ConnectionState.CONNECTED:
            return EXIT_RUNTIME_ERROR

        result = await engine.set_device(device, on)
        if result in (DispatchResult.PUBLISHED, DispatchResult.SKIPPED):
            return EXIT_OK
        return EXIT_RUNTIME_ERROR


def _run_or_exit(coro: Coroutine[Any, Any, int | None]) -> int:
    """Run *coro* to completion, mapping failures to exit codes."""
    try:
        with contextlib.suppress(KeyboardInterrupt):
            return asyncio.run(coro) or EXIT_OK
        return EXIT_OK
    except TogglesyncError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(EXIT_CONFIG_ERROR) from exc
    except Exception as exc:
        logger.error("Runtime error: %s", exc)
        raise typer.Exit(EXIT_RUNTIME_ERROR) from exc


def main() -> None:
    """Console-script entry point."""
    build_cli()()
