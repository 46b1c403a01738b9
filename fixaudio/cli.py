"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
import os
import sys

import typer

from fixaudio.core.config import load_config
from fixaudio.core.errors import FixAudioError
from fixaudio.core.model import RecoveryReport
from fixaudio.core.service import RecoveryService

VERSION = "1.0.0"

app = typer.Typer(
    help="Restore Bluetooth headset audio quality (A2DP) after calls",
    no_args_is_help=True,
)


def _configure_logging(debug: bool, verbose: bool) -> None:
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s", force=True)


def _prompt(text: str) -> str:
    return typer.prompt(text, default="", show_default=False)


def _build_service(config_path: str | None) -> RecoveryService:
    config = load_config(config_path)
    prompt = _prompt if sys.stdin.isatty() else None
    return RecoveryService(config, prompt=prompt, echo=typer.echo)


def _fail(exc: FixAudioError) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


@app.callback()
def main(
    ctx: typer.Context,
    debug: bool = typer.Option(False, "--debug", "-d", help="Enable debug output"),
    verbose: bool = typer.Option(False, "--verbose", help="Log each phase of the recovery"),
    config: str | None = typer.Option(None, "--config", help="Path to a YAML config file"),
) -> None:
    """Fix Bluetooth headsets stuck in the low-quality call profile."""
    _configure_logging(debug or os.environ.get("DEBUG") == "1", verbose)
    ctx.obj = config


def _print_dry_run_plan(disconnect_wait: float, verify_wait: float) -> None:
    typer.echo("DRY RUN: no changes were made. Would execute the following steps:")
    typer.echo("  1. Check device connection status using multiple detection methods")
    typer.echo("  2. Disconnect the Bluetooth device")
    typer.echo(f"  3. Wait {disconnect_wait:g} seconds for clean disconnection")
    typer.echo("  4. Reconnect the Bluetooth device")
    typer.echo(f"  5. Wait {verify_wait:g} seconds for profile establishment")
    typer.echo("  6. Verify A2DP profile restoration")


def _print_report(report: RecoveryReport) -> None:
    identity = report.identity
    detected = " [auto-detected]" if identity.auto_detected else ""
    typer.echo(f"Target: {identity.name} ({identity.address}){detected}")

    for attempt in report.attempts:
        phases = " -> ".join(phase.value for phase in attempt.phases)
        status = "ok" if attempt.succeeded else f"failed: {attempt.reason}"
        typer.echo(f"Attempt {attempt.number}: {phases} ({status})")

    if report.fallback is not None:
        for result in report.fallback.results:
            outcome = "succeeded" if result.success else "failed"
            typer.echo(f"Fallback {result.strategy}: {outcome} {result.detail}".rstrip())

    for note in report.diagnostics:
        typer.echo(f"Note: {note}", err=True)

    if report.success:
        typer.echo(
            f"Audio quality restored successfully (method: {report.method_used}, "
            f"attempts: {report.attempts_used})"
        )
        return

    typer.echo(f"Failed to restore audio quality: {report.reason}", err=True)
    typer.echo("")
    for line in report.guidance:
        typer.echo(line)


@app.command("fix")
def fix(
    ctx: typer.Context,
    device: str | None = typer.Option(None, "--device", help="Device MAC address"),
    name: str | None = typer.Option(None, "--name", help="Device name as shown by the system"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be done without executing"),
    fallbacks: bool | None = typer.Option(
        None,
        "--with-fallbacks/--no-fallbacks",
        help="Try fallback strategies if the primary sequence fails",
    ),
    fallback_mode: str | None = typer.Option(None, "--fallback-mode", help="smart or exhaustive"),
    max_attempts: int | None = typer.Option(None, "--max-attempts", min=1),
    disconnect_wait: float | None = typer.Option(None, "--disconnect-wait", min=0.0),
    verify_wait: float | None = typer.Option(None, "--verify-wait", min=0.0),
    auto_select: bool = typer.Option(
        False,
        "--auto-select",
        help="Use a single name-matched device when the configured address is not paired",
    ),
) -> None:
    """Restore audio quality by cycling the Bluetooth connection."""
    try:
        service = _build_service(ctx.obj)
        report = service.run_recovery(
            address=device,
            name=name,
            dry_run=dry_run,
            fallbacks_enabled=fallbacks,
            fallback_mode=fallback_mode,
            max_attempts=max_attempts,
            disconnect_wait_s=disconnect_wait,
            verify_wait_s=verify_wait,
            auto_select=auto_select or None,
        )
    except FixAudioError as exc:
        raise _fail(exc) from None

    if report.dry_run:
        timings = service.config.timings
        _print_dry_run_plan(
            disconnect_wait if disconnect_wait is not None else timings.disconnect_wait_s,
            verify_wait if verify_wait is not None else timings.verify_wait_s,
        )
    _print_report(report)
    if not report.success:
        raise typer.Exit(code=1)


@app.command("status")
def status(
    ctx: typer.Context,
    device: str | None = typer.Option(None, "--device", help="Device MAC address"),
) -> None:
    """Show current device status with per-source diagnostics."""
    try:
        service = _build_service(ctx.obj)
        report = service.probe_status(device)
        typer.echo(f"Target: {report.identity.name} ({report.identity.address})")
        typer.echo(f"State: {report.state.value}")
        for result in report.results:
            if result.state is None:
                judgment = "no judgment"
            else:
                judgment = f"{result.state.value} (confidence {result.confidence:.1f})"
            typer.echo(f"  {result.source}: {judgment}")

        if report.state.is_connected:
            return

        typer.echo("Device connection not detected. Looking for matching devices...")
        candidates = service.find_devices()
        if not candidates:
            typer.echo("No matching devices found")
        for candidate in candidates:
            typer.echo(f"  {candidate.address} {candidate.name} ({_connection_label(candidate.connected)})")
    except FixAudioError as exc:
        raise _fail(exc) from None


def _connection_label(connected: bool | None) -> str:
    if connected is None:
        return "unknown"
    return "connected" if connected else "not connected"


@app.command("discover")
def discover(ctx: typer.Context) -> None:
    """List paired and known Bluetooth devices."""
    try:
        devices = _build_service(ctx.obj).discover_devices()
    except FixAudioError as exc:
        raise _fail(exc) from None
    if not devices:
        typer.echo("No Bluetooth devices found")
        return
    for device in devices:
        typer.echo(f"{device.address} {device.name} ({_connection_label(device.connected)}) [{device.source}]")


@app.command("find")
def find(
    ctx: typer.Context,
    hint: list[str] | None = typer.Option(None, "--hint", help="Name substring to match (repeatable)"),
) -> None:
    """Find devices whose name matches the configured or given hints."""
    try:
        candidates = _build_service(ctx.obj).find_devices(hint)
    except FixAudioError as exc:
        raise _fail(exc) from None
    if not candidates:
        typer.echo("No matching devices found automatically", err=True)
        raise typer.Exit(code=1)
    typer.echo("Found matching devices:")
    for candidate in candidates:
        typer.echo(f"  {candidate.address} {candidate.name} ({_connection_label(candidate.connected)})")


@app.command("fallback")
def fallback(
    ctx: typer.Context,
    strategy: str | None = typer.Argument(None, help="Strategy name, 'smart' or 'all'"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be done without executing"),
) -> None:
    """Run one fallback strategy, or list them when no name is given."""
    try:
        service = _build_service(ctx.obj)
        if strategy is None:
            for name, description, available in service.fallback_strategies():
                marker = "available" if available else "unavailable"
                typer.echo(f"{name}: {description} ({marker})")
            return
        outcome = service.run_fallback(strategy, dry_run=dry_run)
    except FixAudioError as exc:
        raise _fail(exc) from None

    for result in outcome.results:
        label = "succeeded" if result.success else "failed"
        typer.echo(f"{result.strategy}: {label} {result.detail}".rstrip())
    if outcome.succeeded is None:
        if not outcome.results:
            typer.echo("No fallback strategy is available", err=True)
        raise typer.Exit(code=1)


@app.command("version")
def version() -> None:
    """Show version information."""
    typer.echo(f"fix-audio version {VERSION}")


def run() -> None:
    app()


if __name__ == "__main__":
    run()
