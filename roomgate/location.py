from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

BACKEND_URL_PARAM = "sbUrl"
BACKEND_KEY_PARAM = "sbKey"
PASSWORD_PARAMS = ("pw", "access")
TOKEN_PARAM = "token"
CREDENTIAL_PARAMS = (*PASSWORD_PARAMS, TOKEN_PARAM)


class PageLocation:
    """The page URL as the viewer sees it.

    `strip` rewrites the current URL in place, the way `history.replaceState`
    would, so secrets consumed from the query string do not survive a reload or
    a copy of the address.
    """

    def __init__(self, url: str = "") -> None:
        self.url = url

    def __repr__(self) -> str:
        return f"PageLocation({self.url!r})"

    def _pairs(self) -> list[tuple[str, str]]:
        return parse_qsl(urlsplit(self.url).query, keep_blank_values=True)

    def param(self, name: str) -> str | None:
        for key, value in self._pairs():
            if key == name:
                return value
        return None

    def first_param(self, names: Iterable[str]) -> str:
        for name in names:
            value = (self.param(name) or "").strip()
            if value:
                return value
        return ""

    def has_param(self, name: str) -> bool:
        return any(key == name for key, _ in self._pairs())

    def strip(self, names: Iterable[str]) -> bool:
        drop = set(names)
        pairs = self._pairs()
        kept = [(key, value) for key, value in pairs if key not in drop]
        if len(kept) == len(pairs):
            return False
        parts = urlsplit(self.url)
        self.url = urlunsplit(
            (parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment)
        )
        return True
