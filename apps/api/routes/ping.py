from fastapi import APIRouter, Request

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping(request: Request) -> dict[str, str]:
    service = getattr(request.app.state, "ticket_service", None)
    return {"status": "ok", "tickets": "ready" if service is not None else "unavailable"}
