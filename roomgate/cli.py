from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable

import typer
from rich import print
from rich.logging import RichHandler

from . import __version__
from .access import Outcome
from .config import RoomgateConfig, load_config, read_config_file, write_config_file
from .errors import ConfigurationMissing, CredentialMismatch, PolicyMisconfigured
from .local_state import THEMES, LocalState
from .location import PageLocation
from .sessions import VisitorIdentity, validate_identity
from .settings import MODE_TOKEN
from .state import ViewPhase
from .sync.coordinator import PassResult, SyncCoordinator, Trigger
from .view import BANNER_CONFIG, ConsoleView
from .wiring import build_coordinator

app = typer.Typer(help="roomgate: gated, self-refreshing data room client")
config_app = typer.Typer(help="Client configuration")
app.add_typer(config_app, name="config")

VISIBILITY_IDLE_S = 60.0


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(show_path=False)],
        force=True,
    )


def _load_config_or_exit() -> RoomgateConfig:
    try:
        read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    return load_config()


def _state_for(db_path: str | None) -> LocalState:
    cfg = _load_config_or_exit()
    if db_path:
        cfg.db_path = db_path
    return LocalState(cfg.state_path())


def _prompt_identity() -> VisitorIdentity:
    while True:
        name = typer.prompt("Full name")
        email = typer.prompt("Email")
        company = typer.prompt("Company", default="", show_default=False)
        try:
            return validate_identity(name, email, company)
        except ValueError as exc:
            print(f"[red]{exc}[/red]")


async def _authorize(
    coordinator: SyncCoordinator, *, once: bool, trigger: Trigger = Trigger.INITIAL
) -> PassResult | None:
    if coordinator.state.identity is None:
        identity = await asyncio.to_thread(_prompt_identity)
        result = await coordinator.identify(identity)
    else:
        result = await coordinator.reconcile(trigger)

    while not result.authorized:
        decision = result.decision
        if decision is not None and decision.outcome is Outcome.CREDENTIAL_REQUIRED:
            is_token = decision.detail == MODE_TOKEN
            entered = await asyncio.to_thread(
                typer.prompt,
                "Access token" if is_token else "Access passcode",
                hide_input=not is_token,
            )
            try:
                result = await coordinator.submit_credential(entered)
            except (CredentialMismatch, PolicyMisconfigured) as exc:
                print(f"[red]{exc}[/red]")
            continue
        if once:
            return None
        await asyncio.to_thread(
            typer.prompt, "Press Enter to retry", default="", show_default=False
        )
        result = await coordinator.refresh()
    return result


async def _interact(
    coordinator: SyncCoordinator,
    view: ConsoleView,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Read viewer commands until quit or end of input.

    Input after a long idle stretch counts as the viewer coming back to the
    room and triggers a visibility pass first. Any input while the room is
    gated or blocked goes back through authorization.
    """
    view.show_help()
    last_input = clock()
    while True:
        line = await asyncio.to_thread(typer.prompt, "roomgate", default="", show_default=False)
        now = clock()
        if now - last_input >= VISIBILITY_IDLE_S:
            await coordinator.notify_visible()
        last_input = now

        command, _, arg = line.strip().partition(" ")
        command = command.lower()
        arg = arg.strip()
        if command in ("q", "quit"):
            return
        if command in ("l", "logout"):
            await coordinator.logout()
            await _authorize(coordinator, once=False)
            continue
        if coordinator.state.phase is not ViewPhase.AUTHORIZED:
            await _authorize(coordinator, once=False, trigger=Trigger.MANUAL)
            continue

        state = coordinator.state
        if not command:
            continue
        if command in ("h", "help"):
            view.show_help()
        elif command in ("s", "sections"):
            view.show_sections(state)
        elif command in ("r", "refresh"):
            await coordinator.refresh()
        elif command in ("o", "open") and arg:
            coordinator.open_section(arg)
            view.render_section(state, arg)
        elif command in ("d", "doc") and arg:
            document = state.find_document(arg)
            if document is None:
                print(f"[yellow]No document {arg}[/yellow]")
                continue
            coordinator.open_document(document)
            view.show_document(document)
        else:
            view.unknown_command(line.strip())


async def _watch(coordinator: SyncCoordinator, view: ConsoleView, *, once: bool) -> None:
    try:
        result = await _authorize(coordinator, once=once)
        if result is None or once:
            return
        await _interact(coordinator, view)
    except typer.Abort:
        print("[dim]Input closed.[/dim]")
    finally:
        await coordinator.close()
        await coordinator.backend.aclose()


@app.command()
def version() -> None:
    """Print the installed version."""

    print(__version__)


@app.command()
def watch(
    page_url: str = typer.Argument(..., help="Data room link, including its query string"),
    db_path: str = typer.Option(None, help="Path to local state database"),
    poll_interval_s: int = typer.Option(None, help="Seconds between background refreshes"),
    no_realtime: bool = typer.Option(False, "--no-realtime", help="Disable push updates"),
    once: bool = typer.Option(False, "--once", help="Load once and exit"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Open the data room and keep it current."""

    _configure_logging(verbose)
    cfg = _load_config_or_exit()
    if db_path:
        cfg.db_path = db_path
    if poll_interval_s is not None:
        cfg.poll_interval_s = poll_interval_s
    if no_realtime:
        cfg.realtime_enabled = False

    view = ConsoleView()
    local_state = LocalState(cfg.state_path())
    try:
        try:
            coordinator = build_coordinator(cfg, local_state, PageLocation(page_url), view)
        except ConfigurationMissing as exc:
            view.show_banner(BANNER_CONFIG, str(exc))
            raise typer.Exit(code=1) from exc
        try:
            asyncio.run(_watch(coordinator, view, once=once))
        except KeyboardInterrupt:
            print("[dim]Session closed.[/dim]")
    finally:
        local_state.close()


@app.command()
def status(
    db_path: str = typer.Option(None, help="Path to local state database"),
    as_json: bool = typer.Option(False, "--json", help="Output JSON"),
) -> None:
    """Show locally stored endpoint, identity, session and unlock state."""

    cfg = _load_config_or_exit()
    if db_path:
        cfg.db_path = db_path
    local_state = LocalState(cfg.state_path())
    try:
        endpoint = local_state.load_endpoint()
        payload = {
            "endpoint": endpoint[0] if endpoint else cfg.backend_url,
            "identity": local_state.load_identity(),
            "session": local_state.load_session_descriptor(cfg.session_ttl_s),
            "unlock_proofs": len(local_state.load_proofs()),
            "theme": local_state.load_theme(),
        }
    finally:
        local_state.close()
    if as_json:
        print(json.dumps(payload, indent=2))
        return
    identity = payload["identity"] or {}
    print(f"- Endpoint: {payload['endpoint'] or 'not configured'}")
    visitor = f"{identity.get('name') or 'unknown'} {identity.get('email') or ''}"
    print(f"- Visitor: {visitor.strip()}")
    session = payload["session"]
    print(f"- Session: {session['session_id'] if session else 'none'}")
    print(f"- Unlock proofs: {payload['unlock_proofs']}")
    print(f"- Theme: {payload['theme']}")


@app.command()
def logout(db_path: str = typer.Option(None, help="Path to local state database")) -> None:
    """Forget the visitor identity, session and unlock proofs on this device."""

    local_state = _state_for(db_path)
    try:
        local_state.clear_identity()
        local_state.clear_session_descriptor()
        removed = local_state.clear_all_proofs()
    finally:
        local_state.close()
    print(f"[green]Logged out[/green] ({removed} unlock proofs removed)")


@app.command()
def theme(
    value: str = typer.Argument(None, help="dark or light"),
    db_path: str = typer.Option(None, help="Path to local state database"),
) -> None:
    """Show or set the theme preference."""

    local_state = _state_for(db_path)
    try:
        if value is None:
            print(local_state.load_theme())
            return
        if value not in THEMES:
            print(f"[red]Unknown theme: {value}[/red] (choose {', '.join(THEMES)})")
            raise typer.Exit(code=1)
        local_state.save_theme(value)
    finally:
        local_state.close()
    print(f"Theme set to {value}")


@config_app.command("show")
def config_show() -> None:
    """Print the effective configuration."""

    cfg = _load_config_or_exit()
    data = dict(cfg.__dict__)
    if data.get("backend_key"):
        data["backend_key"] = "***"
    print(json.dumps(data, indent=2))


@config_app.command("set")
def config_set(key: str, value: str) -> None:
    """Set a key in the config file."""

    if not hasattr(RoomgateConfig(), key):
        print(f"[red]Unknown config key: {key}[/red]")
        raise typer.Exit(code=1)
    try:
        data = read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    data[key] = value
    try:
        path = write_config_file(data)
    except OSError as exc:
        print(f"[red]Failed to write config: {exc}[/red]")
        raise typer.Exit(code=1) from exc
    print(f"[green]Updated {path}[/green]")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
