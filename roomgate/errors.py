from __future__ import annotations


class RoomgateError(Exception):
    """Base class for errors the client surfaces to the viewer."""


class ConfigurationMissing(RoomgateError):
    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or "Not connected: missing backend config. Open the page using the admin-generated"
            " link (it includes sbUrl and sbKey)."
        )


class ConnectionFailure(RoomgateError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class CredentialMismatch(RoomgateError):
    def __init__(self, mode: str) -> None:
        super().__init__("Incorrect token." if mode == "token" else "Incorrect passcode.")
        self.mode = mode


class PolicyMisconfigured(RoomgateError):
    def __init__(self, mode: str) -> None:
        super().__init__(
            f"No {'token' if mode == 'token' else 'password'} is configured. "
            "Please contact the administrator."
        )
        self.mode = mode
