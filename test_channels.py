# test_channels.py
import asyncio

from qrdine.events.bus import EventBus, Topic
from qrdine.events.channels import (
    CONNECTED, KEEPALIVE, ChannelFilter, LiveChannel, sse_stream,
)


def _updated(order_id, restaurant_id="r1", status="PREPARING"):
    return {
        "restaurant_id": restaurant_id,
        "order_id": order_id,
        "internal_status": status,
        "public_status": "Being prepared",
        "table_number": 3,
        "total_amount": 498.0,
    }


async def _next(agen, timeout=1.0):
    return await asyncio.wait_for(agen.__anext__(), timeout)


def test_kitchen_channel_gets_only_its_restaurant():
    async def scenario():
        bus = EventBus()
        async with LiveChannel(bus, ChannelFilter.kitchen("r1")) as ch:
            msgs = ch.messages()
            first = await _next(msgs)
            bus.publish(Topic.NEW_ORDER, {"restaurant_id": "r2", "order_id": "x", "order": {"id": "x"}})
            bus.publish(Topic.NEW_ORDER, {"restaurant_id": "r1", "order_id": "o1",
                                          "order": {"id": "o1", "table_number": 3}})
            bus.publish(Topic.CALL_WAITER, {"restaurant_id": "r1", "table_number": 3})
            second = await _next(msgs)
            third = await _next(msgs)
            await msgs.aclose()
        return first, second, third, bus.subscriber_count()

    first, second, third, remaining = asyncio.run(scenario())
    assert first == CONNECTED
    assert second.event == "new-order"
    assert second.data == {"id": "o1", "table_number": 3}
    assert third.event == "call-waiter"
    assert remaining == 0


def test_customer_channel_sees_only_public_fields():
    async def scenario():
        bus = EventBus()
        async with LiveChannel(bus, ChannelFilter.customer("o1")) as ch:
            msgs = ch.messages()
            await _next(msgs)
            bus.publish(Topic.ORDER_UPDATED, _updated("other"))
            bus.publish(Topic.CALL_WAITER, {"restaurant_id": "r1"})
            bus.publish(Topic.NEW_ORDER, {"restaurant_id": "r1", "order_id": "o1", "order": {}})
            bus.publish(Topic.ORDER_UPDATED, _updated("o1"))
            msg = await _next(msgs)
            await msgs.aclose()
        return msg

    msg = asyncio.run(scenario())
    assert msg.event == "status-update"
    assert msg.data == {"order_id": "o1", "public_status": "Being prepared"}


def test_late_channel_gets_no_replay():
    async def scenario():
        bus = EventBus()
        bus.publish(Topic.ORDER_UPDATED, _updated("o1"))
        async with LiveChannel(bus, ChannelFilter.customer("o1"), keepalive=0.05) as ch:
            msgs = ch.messages()
            out = [await _next(msgs), await _next(msgs)]
            await msgs.aclose()
        return out

    assert asyncio.run(scenario()) == [CONNECTED, KEEPALIVE]


def test_keepalive_while_idle():
    async def scenario():
        bus = EventBus()
        async with LiveChannel(bus, ChannelFilter.waiter("r1"), keepalive=0.05) as ch:
            msgs = ch.messages()
            await _next(msgs)
            ka = [await _next(msgs), await _next(msgs)]
            await msgs.aclose()
        return ka

    assert all(m.encode() == ": keepalive\n\n" for m in asyncio.run(scenario()))


def test_events_from_worker_threads_are_delivered():
    async def scenario():
        bus = EventBus()
        async with LiveChannel(bus, ChannelFilter.waiter("r1")) as ch:
            msgs = ch.messages()
            await _next(msgs)
            delivered = await asyncio.to_thread(bus.publish, Topic.ORDER_UPDATED, _updated("o1", status="READY"))
            msg = await _next(msgs)
            await msgs.aclose()
        return delivered, msg

    delivered, msg = asyncio.run(scenario())
    assert delivered == 1
    assert msg.event == "order-updated"
    assert msg.data["internal_status"] == "READY"


def test_overflowing_channel_is_closed_and_unregistered():
    async def scenario():
        bus = EventBus()
        ch = LiveChannel(bus, ChannelFilter.customer("o1"), queue_size=2)
        ch.open()
        for _ in range(3):
            bus.publish(Topic.ORDER_UPDATED, _updated("o1"))
        await asyncio.sleep(0.01)
        return ch.closed, bus.subscriber_count()

    closed, remaining = asyncio.run(scenario())
    assert closed is True
    assert remaining == 0


def test_channel_whose_loop_is_gone_is_dropped_on_publish():
    bus = EventBus()

    async def open_and_leave():
        ch = LiveChannel(bus, ChannelFilter.customer("o1"))
        ch.open()
        return ch

    ch = asyncio.run(open_and_leave())
    assert bus.subscriber_count(Topic.ORDER_UPDATED) == 1
    assert bus.publish(Topic.ORDER_UPDATED, _updated("o1")) == 0
    assert bus.subscriber_count(Topic.ORDER_UPDATED) == 0
    ch.close()


def test_sse_stream_encodes_and_releases_on_close():
    async def scenario():
        bus = EventBus()
        stream = sse_stream(LiveChannel(bus, ChannelFilter.customer("o1")))
        hello = await _next(stream)
        during = bus.subscriber_count()
        bus.publish(Topic.ORDER_UPDATED, _updated("o1"))
        update = await _next(stream)
        await stream.aclose()
        return hello, during, update, bus.subscriber_count()

    hello, during, update, after = asyncio.run(scenario())
    assert hello == 'event: connected\ndata: {"status": "connected"}\n\n'
    assert during == 1
    assert update == 'event: status-update\ndata: {"order_id": "o1", "public_status": "Being prepared"}\n\n'
    assert after == 0


def test_sse_stream_ends_when_client_disconnects():
    async def scenario():
        bus = EventBus()

        async def gone():
            return True

        chunks = []
        ch = LiveChannel(bus, ChannelFilter.kitchen("r1"), keepalive=0.05)
        async for chunk in sse_stream(ch, gone):
            chunks.append(chunk)
        return chunks, bus.subscriber_count()

    chunks, remaining = asyncio.run(scenario())
    assert chunks == ['event: connected\ndata: {"status": "connected"}\n\n']
    assert remaining == 0


def test_disconnect_is_noticed_after_a_message_without_waiting_for_keepalive():
    async def scenario():
        bus = EventBus()
        state = {"gone": False}

        async def gone():
            return state["gone"]

        stream = sse_stream(LiveChannel(bus, ChannelFilter.customer("o1"), keepalive=30), gone)
        await _next(stream)
        bus.publish(Topic.ORDER_UPDATED, _updated("o1"))
        bus.publish(Topic.ORDER_UPDATED, _updated("o1", status="READY"))
        first = await _next(stream)
        state["gone"] = True
        try:
            await _next(stream)
            ended = False
        except StopAsyncIteration:
            ended = True
        return first, ended, bus.subscriber_count()

    first, ended, remaining = asyncio.run(scenario())
    assert first.startswith("event: status-update")
    assert ended is True
    assert remaining == 0
