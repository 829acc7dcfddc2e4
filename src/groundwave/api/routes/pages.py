"""Small public endpoints."""

from fastapi import APIRouter, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from groundwave.config import settings

router = APIRouter(tags=["pages"])


@router.get("/connectivity", response_class=PlainTextResponse)
async def connectivity() -> str:
    """Reachability check for clients; no auth, no database."""
    return "1"


@router.get("/security.txt", response_model=None)
@router.get("/.well-known/security.txt", response_model=None)
async def security_txt() -> Response:
    if not settings.security_contact_url:
        return Response(status_code=status.HTTP_404_NOT_FOUND)
    return RedirectResponse(
        url=settings.security_contact_url, status_code=status.HTTP_301_MOVED_PERMANENTLY
    )
