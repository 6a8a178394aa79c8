"""Request-scoped dependencies for the Comicforge API.

:func:`require_identity` is the auth gate.  Protected routes declare it as a
dependency and receive the caller's :class:`~comicforge.core.security.Identity`;
handlers then scope every comic query to ``identity.user_id``.

Status mapping:

- no ``Authorization: Bearer`` header → 401
- bad signature, malformed or expired token → 403
- server has no signing secret → 500
"""

from __future__ import annotations

from fastapi import Header, HTTPException, Request

from comicforge.core.security import AuthError, Identity, decode_access_token, parse_bearer


def require_identity(
    request: Request,
    authorization: str | None = Header(default=None),
) -> Identity:
    """Verify the bearer token and return the embedded identity.

    Raises:
        HTTPException: 401, 403 or 500 as described in the module docstring.
    """
    token = parse_bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Access token required")

    try:
        return decode_access_token(token, request.app.state.config.jwt_secret)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
