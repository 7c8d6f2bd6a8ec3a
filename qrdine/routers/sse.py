"""Live streams for staff dashboards and customer order tracking.

Each connection owns one ``LiveChannel``; ``sse_stream`` registers it on the
bus when the response starts and unregisters it however the response ends.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from qrdine.config import settings
from qrdine.db import SessionLocal
from qrdine.deps import Caller, get_bus, require_role
from qrdine.errors import AuthorizationError, NotFoundError
from qrdine.events.bus import EventBus
from qrdine.events.channels import ChannelFilter, LiveChannel, sse_stream
from qrdine.models.core import DiningTable, Order, StaffRole

router = APIRouter(prefix="/sse", tags=["sse"])

_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}

_kitchen = require_role(StaffRole.KITCHEN, StaffRole.ADMIN)
_waiter = require_role(StaffRole.WAITER, StaffRole.ADMIN)


def _stream(request: Request, bus: EventBus, flt: ChannelFilter) -> StreamingResponse:
    channel = LiveChannel(bus, flt, keepalive=settings.SSE_KEEPALIVE_SECONDS, queue_size=settings.SSE_QUEUE_SIZE)
    return StreamingResponse(
        sse_stream(channel, request.is_disconnected),
        media_type="text/event-stream",
        headers=_HEADERS,
    )


def _customer_order(order_id: str, token: str) -> str:
    # own short-lived session: get_db would stay open for the life of the stream
    with SessionLocal() as db:
        o = db.get(Order, order_id)
        if not o:
            raise NotFoundError("Order not found")
        table = db.query(DiningTable).filter(DiningTable.qr_token == token).first()
        if not table or table.id != o.table_id:
            raise AuthorizationError("Access denied")
        return o.id


@router.get("/kitchen")
def kitchen_stream(request: Request, bus: EventBus = Depends(get_bus), caller: Caller = Depends(_kitchen)):
    return _stream(request, bus, ChannelFilter.kitchen(caller.restaurant_id))


@router.get("/waiter")
def waiter_stream(request: Request, bus: EventBus = Depends(get_bus), caller: Caller = Depends(_waiter)):
    return _stream(request, bus, ChannelFilter.waiter(caller.restaurant_id))


@router.get("/order/{order_id}")
def order_stream(request: Request, bus: EventBus = Depends(get_bus), checked: str = Depends(_customer_order)):
    """Customer tracking: only ``status-update`` events with the public status."""
    return _stream(request, bus, ChannelFilter.customer(checked))
