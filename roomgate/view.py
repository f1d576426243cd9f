from __future__ import annotations

from typing import Any, Protocol

from rich.console import Console
from rich.table import Table

from .access import Decision, blocker_title, gate_message
from .state import AppState

BANNER_CONNECTION = "connection"
BANNER_CONFIG = "config"


class ViewLayer(Protocol):
    def show_sync_indicator(self) -> None: ...

    def show_blocker(self, decision: Decision) -> None: ...

    def hide_blocker(self) -> None: ...

    def show_gate(self, decision: Decision, message: str) -> None: ...

    def hide_gate(self) -> None: ...

    def show_banner(self, kind: str, message: str) -> None: ...

    def render(self, state: AppState) -> None: ...

    def request_identity(self) -> None: ...


class ConsoleView:
    """Terminal rendition of the data room screens."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()
        self._blocked = False
        self._gate_shown = False

    def show_sync_indicator(self) -> None:
        self.console.log("[dim]syncing…[/dim]")

    def show_blocker(self, decision: Decision) -> None:
        self._blocked = True
        self.console.print(f"[bold yellow]{blocker_title(decision.detail)}[/bold yellow]")
        self.console.print(gate_message(decision))

    def hide_blocker(self) -> None:
        if self._blocked:
            self.console.print("[green]Data room available again.[/green]")
        self._blocked = False

    def show_gate(self, decision: Decision, message: str) -> None:
        self._gate_shown = True
        self.console.print(f"[bold]Access required[/bold] ({decision.detail or 'password'})")
        self.console.print(message)
        self.console.print("[dim]Press Enter to unlock.[/dim]")

    def hide_gate(self) -> None:
        self._gate_shown = False

    def show_banner(self, kind: str, message: str) -> None:
        style = "red" if kind == BANNER_CONFIG else "yellow"
        self.console.print(f"[{style}]{message}[/{style}]")

    def render(self, state: AppState) -> None:
        self.show_sections(state)
        if state.current_section is not None:
            self.render_section(state, state.current_section)

    def show_sections(self, state: AppState) -> None:
        table = Table(title=f"Data room ({len(state.documents)} documents)")
        table.add_column("Section")
        table.add_column("Name")
        table.add_column("Documents", justify="right")
        table.add_column("Notes", justify="right")
        for section_id, name in state.visible_sections():
            table.add_row(
                section_id,
                name,
                str(len(state.section_documents(section_id))),
                str(len(state.section_notes(section_id))),
            )
        self.console.print(table)

    def render_section(self, state: AppState, section_id: str) -> None:
        table = Table(title=dict(state.visible_sections()).get(section_id, section_id))
        table.add_column("Id")
        table.add_column("Document")
        table.add_column("Type")
        table.add_column("Status")
        for doc in state.section_documents(section_id):
            table.add_row(
                str(doc.get("id") or ""),
                str(doc.get("name") or ""),
                str(doc.get("file_type") or ""),
                str(doc.get("status") or "missing"),
            )
        self.console.print(table)
        for note in state.section_notes(section_id):
            self.console.print(f"[dim]note:[/dim] {note.get('content') or ''}")

    def show_document(self, document: dict[str, Any]) -> None:
        url = str(document.get("url") or "").strip()
        status = str(document.get("status") or "").lower()
        self.console.print(f"[bold]{document.get('name') or 'Untitled'}[/bold]")
        if status == "uploaded" and url:
            self.console.print(url)
        else:
            self.console.print("[dim]Not available yet.[/dim]")

    def show_help(self) -> None:
        self.console.print(
            "Commands: [bold]s[/bold]ections, [bold]o[/bold]pen SECTION, [bold]d[/bold]oc ID, "
            "[bold]r[/bold]efresh, [bold]l[/bold]ogout, [bold]q[/bold]uit"
        )

    def unknown_command(self, command: str) -> None:
        self.console.print(f"[yellow]Unknown command: {command}[/yellow] (h for help)")

    def request_identity(self) -> None:
        self.console.print("Please identify yourself to access the data room.")
