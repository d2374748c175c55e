from typing import Annotated

from fastapi import Depends, Header, HTTPException

from opsdesk.access.models import CallerContext


def _parse_identifier(value: str | None, name: str) -> int:
    if value is None or not value.strip():
        raise HTTPException(status_code=401, detail=f"Missing {name} header")
    try:
        return int(value)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid {name} header") from exc


async def get_caller(
    x_user_id: Annotated[str | None, Header()] = None,
    x_role_id: Annotated[str | None, Header()] = None,
) -> CallerContext:
    """Build the caller context from headers set by the authentication gateway.

    Login and session handling live upstream; by the time a request reaches this
    service the gateway has resolved the user and their role.
    """

    return CallerContext(
        user_id=_parse_identifier(x_user_id, "X-User-Id"),
        role_id=_parse_identifier(x_role_id, "X-Role-Id"),
    )


Caller = Annotated[CallerContext, Depends(get_caller)]
