"""HTTP Basic auth for the API and sync-job attribution.

Each authenticated username becomes the actor of the sync jobs it starts, which
is also the key the admission rate gate throttles on.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
from dataclasses import dataclass
from typing import Mapping

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BasicAuthCredentials:
    username: str
    password: str


def _parse_basic_auth_header(header_value: str) -> BasicAuthCredentials | None:
    """Parse an Authorization header containing HTTP Basic auth."""
    if not header_value:
        return None

    scheme, _, param = header_value.partition(" ")
    if scheme.lower() != "basic" or not param:
        return None

    try:
        decoded = base64.b64decode(param, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None

    username, sep, password = decoded.partition(":")
    if sep != ":":
        return None

    return BasicAuthCredentials(username=username, password=password)


def parse_user_table(
    users: str | None, username: str | None = None, password: str | None = None
) -> dict[str, str]:
    """Build the username -> password table from settings.

    ``users`` is a comma separated list of ``name:password`` pairs; a single
    ``username``/``password`` pair is merged in when both are set.
    """
    table: dict[str, str] = {}
    for entry in (users or "").split(","):
        entry = entry.strip()
        if not entry:
            continue
        name, sep, secret = entry.partition(":")
        if sep != ":" or not name or not secret:
            raise ValueError(f"Invalid AUTH_USERS entry '{name or entry}': expected name:password")
        table[name] = secret
    if username and password:
        table[username] = password
    return table


class BasicAuthMiddleware(BaseHTTPMiddleware):
    """Require HTTP Basic auth on every path except an allowlist.

    On success the username is stored on ``request.state.actor``.
    """

    def __init__(
        self,
        app,
        *,
        users: Mapping[str, str],
        allow_paths: set[str] | None = None,
        realm: str = "IssueSync",
    ):
        super().__init__(app)
        if not users:
            raise ValueError("BasicAuthMiddleware needs at least one user")
        self._users = dict(users)
        self._allow_paths = allow_paths or {"/health"}
        self._realm = realm

    def _unauthorized(self) -> Response:
        return Response(
            content="Unauthorized",
            status_code=401,
            headers={"WWW-Authenticate": f'Basic realm="{self._realm}", charset="UTF-8"'},
        )

    def _authenticate(self, creds: BasicAuthCredentials) -> bool:
        expected = self._users.get(creds.username)
        # Compare against a throwaway value for unknown users so timing doesn't leak names.
        ok = secrets.compare_digest(
            creds.password.encode("utf-8"), (expected or secrets.token_hex(16)).encode("utf-8")
        )
        return ok and expected is not None

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self._allow_paths:
            return await call_next(request)

        creds = _parse_basic_auth_header(request.headers.get("Authorization", ""))
        if creds is None:
            return self._unauthorized()

        if not self._authenticate(creds):
            logger.warning(f"Rejected credentials for '{creds.username}' on {request.url.path}")
            return self._unauthorized()

        request.state.actor = creds.username
        return await call_next(request)
