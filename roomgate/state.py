from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .access import Decision
from .sessions import VisitorIdentity
from .settings import SettingsSnapshot

SECTIONS: tuple[tuple[str, str], ...] = (
    ("executive", "Executive Summary"),
    ("land", "Land & Site Control"),
    ("interconnection", "Interconnection"),
    ("permitting", "Permitting"),
    ("technical", "Technical & Engineering"),
    ("epc", "EPC & Construction"),
    ("market", "Market Analysis"),
    ("financial", "Financial Model"),
    ("risk", "Risk Assessment"),
    ("entity", "Entity Structure"),
    ("team", "Team & Partners"),
)


class ViewPhase(str, Enum):
    INIT = "init"
    BLOCKED = "blocked"
    GATE_SHOWN = "gate_shown"
    AUTHORIZED = "authorized"


@dataclass
class AppState:
    phase: ViewPhase = ViewPhase.INIT
    settings: SettingsSnapshot = field(default_factory=SettingsSnapshot)
    documents: list[dict[str, Any]] = field(default_factory=list)
    notes: list[dict[str, Any]] = field(default_factory=list)
    decision: Decision | None = None
    identity: VisitorIdentity | None = None
    current_section: str | None = None
    open_document: dict[str, Any] | None = None

    def reset(self) -> None:
        self.phase = ViewPhase.INIT
        self.settings = SettingsSnapshot()
        self.documents = []
        self.notes = []
        self.decision = None
        self.identity = None
        self.current_section = None
        self.open_document = None

    def section_documents(self, section_id: str) -> list[dict[str, Any]]:
        return [doc for doc in self.documents if doc.get("section") == section_id]

    def section_notes(self, section_id: str) -> list[dict[str, Any]]:
        return [note for note in self.notes if note.get("section") == section_id]

    def visible_sections(self) -> list[tuple[str, str]]:
        """Sections to list, in catalog order.

        Empty sections are hidden unless the room settings ask for them.
        Documents filed under an unknown section id get a section of their own.
        """
        populated = {str(doc.get("section") or "") for doc in self.documents}
        populated.discard("")
        if self.settings.show_empty_sections:
            sections = list(SECTIONS)
        else:
            sections = [(sid, name) for sid, name in SECTIONS if sid in populated]
        known = {sid for sid, _name in SECTIONS}
        sections.extend((sid, sid) for sid in sorted(populated - known))
        return sections

    def find_document(self, doc_id: str) -> dict[str, Any] | None:
        for doc in self.documents:
            if str(doc.get("id")) == doc_id:
                return doc
        return None
