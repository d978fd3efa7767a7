from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from order_api.deps import get_caller, get_orchestrator
from order_api.models import CallerContext
from order_api.saga.orchestrator import OrderFulfillmentOrchestrator
from order_api.schemas import OrderOut, PlaceOrderReq

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("", response_model=List[OrderOut])
def list_orders(
    caller: CallerContext = Depends(get_caller),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    return [OrderOut.from_order(o) for o in orchestrator.list_orders(caller.owner_id)]


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    caller: CallerContext = Depends(get_caller),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    order = orchestrator.get_order(order_id, caller.owner_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return OrderOut.from_order(order)


@router.post("", response_model=OrderOut, status_code=201)
def place_order(
    req: PlaceOrderReq,
    response: Response,
    caller: CallerContext = Depends(get_caller),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    order = orchestrator.place(req.line_requests(), req.shipping_address, caller)
    response.headers["Location"] = f"/orders/{order.id}"
    return OrderOut.from_order(order)


@router.delete("/{order_id}")
def cancel_order(
    order_id: str,
    caller: CallerContext = Depends(get_caller),
    orchestrator: OrderFulfillmentOrchestrator = Depends(get_orchestrator),
):
    # someone else's order looks exactly like a missing one
    if not orchestrator.cancel(order_id, caller):
        raise HTTPException(status_code=404, detail="Order not found")
    return {"ok": True, "order_id": order_id}
