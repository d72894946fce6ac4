from collections.abc import Callable, Mapping
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from queueline.core.config import get_settings
from queueline.lines.identity import Identity, Role

bearer_scheme = HTTPBearer(auto_error=False)


def parse_token_table(raw: Mapping[str, str]) -> dict[str, Identity]:
    """Turn ``{"token": "user_id:role"}`` entries into identities."""

    table: dict[str, Identity] = {}
    for token, spec in raw.items():
        user_id, _, role = spec.partition(":")
        if not user_id:
            raise ValueError(f"Access token entry for {token[:4]}... has no user id")
        table[token] = Identity(user_id=user_id, role=Role(role or Role.USER.value))
    return table


def resolve_identity_from_token(token: str | None, table: Mapping[str, Identity] | None = None) -> Identity | None:
    """Return the identity bound to ``token``; ``None`` when no token was sent.

    This stands in for the upstream identity provider: in production the
    token would be verified there and only the resulting identity passed on.
    """

    if token is None:
        return None

    if table is None:
        table = parse_token_table(get_settings().access_tokens)
    identity = table.get(token)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid authentication credentials")
    return identity


async def get_current_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    request: Request,
) -> Identity:
    cached = getattr(request.state, "identity", None)
    if isinstance(cached, Identity):
        return cached

    token = credentials.credentials if credentials is not None else None
    identity = resolve_identity_from_token(token)
    if identity is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    request.state.identity = identity
    return identity


def capability_required(check: Callable[[Identity], bool]) -> Callable[[Identity], Identity]:
    """Dependency factory ensuring the current identity passes ``check``."""

    async def dependency(identity: Annotated[Identity, Depends(get_current_identity)]) -> Identity:
        if not check(identity):
            raise HTTPException(status_code=403, detail="Staff access required")
        return identity

    return dependency


require_staff = capability_required(lambda identity: identity.can_manage_queue)

CurrentIdentity = Annotated[Identity, Depends(get_current_identity)]
StaffIdentity = Annotated[Identity, Depends(require_staff)]
