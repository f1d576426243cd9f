from roomgate.settings import (
    MODE_OPEN,
    MODE_PASSWORD,
    MODE_TOKEN,
    STATUS_ACTIVE,
    SettingsSnapshot,
    normalize_mode,
)


def test_from_rows_builds_key_value_view() -> None:
    snapshot = SettingsSnapshot.from_rows(
        [
            {"key": "dr_status", "value": "Maintenance"},
            {"key": "dr_access_mode", "value": "token"},
            {"key": "dr_link_token", "value": "  abc123  "},
            {"key": "", "value": "ignored"},
            {"value": "no key"},
        ]
    )

    assert len(snapshot) == 3
    assert snapshot.status == "maintenance"
    assert snapshot.access_mode == MODE_TOKEN
    assert snapshot.link_token == "abc123"
    assert snapshot.password == ""


def test_missing_settings_fall_back_to_active_password_mode() -> None:
    snapshot = SettingsSnapshot()

    assert snapshot.status == STATUS_ACTIVE
    assert snapshot.access_mode == MODE_PASSWORD
    assert snapshot.show_empty_sections is False


def test_unknown_access_mode_is_treated_as_password() -> None:
    assert normalize_mode("OPEN") == MODE_OPEN
    assert normalize_mode("sso") == MODE_PASSWORD
    assert normalize_mode(None) == MODE_PASSWORD


def test_null_values_read_as_empty_strings() -> None:
    snapshot = SettingsSnapshot.from_rows([{"key": "dr_password", "value": None}])

    assert snapshot["dr_password"] == ""
    assert snapshot.password == ""


def test_configured_secret_follows_mode() -> None:
    snapshot = SettingsSnapshot({"dr_password": "pw", "dr_link_token": "tok"})

    assert snapshot.configured_secret("token") == "tok"
    assert snapshot.configured_secret("password") == "pw"
    assert snapshot.configured_secret("bogus") == "pw"


def test_show_empty_sections_flag() -> None:
    assert SettingsSnapshot({"dr_show_empty_sections": "TRUE"}).show_empty_sections is True
    assert SettingsSnapshot({"dr_show_empty_sections": "1"}).show_empty_sections is False
