from fastapi import APIRouter, Request

from queueline.dependencies.auth import CurrentIdentity

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping(request: Request) -> dict[str, str]:
    postgres = getattr(request.app.state, "postgres", None)
    if postgres is None:
        return {"status": "ok", "store": "memory"}
    await postgres.test_connection()
    return {"status": "ok", "store": "postgres"}


@router.get("/whoami", summary="Echo the verified identity")
async def whoami(identity: CurrentIdentity) -> dict[str, str]:
    return {"userId": identity.user_id, "role": identity.role.value}
