from fastapi import Header, HTTPException, Request

from order_api.models import CallerContext
from order_api.saga.orchestrator import OrderFulfillmentOrchestrator
from order_api.security import decode_token


def get_caller(authorization: str = Header(None)) -> CallerContext:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer token")

    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = decode_token(token)
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")

    owner_id = payload.get("sub")
    if not owner_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    # the raw token is forwarded to inventory unmodified
    return CallerContext(owner_id=owner_id, access_token=token)


def get_orchestrator(request: Request) -> OrderFulfillmentOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Order service not ready")
    return orchestrator
