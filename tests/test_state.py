from roomgate.settings import SettingsSnapshot
from roomgate.state import SECTIONS, AppState


def test_only_populated_sections_are_listed_by_default() -> None:
    state = AppState(
        documents=[
            {"id": 1, "section": "financial"},
            {"id": 2, "section": "executive"},
            {"id": 3, "section": "appendix"},
        ]
    )

    assert state.visible_sections() == [
        ("executive", "Executive Summary"),
        ("financial", "Financial Model"),
        ("appendix", "appendix"),
    ]


def test_empty_sections_shown_when_room_asks_for_them() -> None:
    state = AppState(settings=SettingsSnapshot({"dr_show_empty_sections": "TRUE"}))

    assert state.visible_sections() == list(SECTIONS)
    assert state.find_document("1") is None
