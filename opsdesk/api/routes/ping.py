from fastapi import APIRouter, HTTPException, Request

from opsdesk.tickets.errors import DependencyError

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/db", summary="Database connectivity probe")
async def ping_database(request: Request) -> dict[str, str]:
    postgres = getattr(request.app.state, "postgres", None)
    if postgres is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    try:
        await postgres.test_connection()
    except DependencyError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"status": "ok"}
