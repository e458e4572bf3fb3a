"""Viewer-side sync: API client, polled views and the push listener."""

import asyncio

import httpx
import pytest

from tortillas.core.errors import ConflictError, NotFoundError, TransientError, ValidationError
from tortillas.models import OrderStatus, TableStatus
from tortillas.schemas import EventType, SyncEvent, TableCreate
from tortillas.sync.client import OrderingClient
from tortillas.sync.push import PushListener, push_url
from tortillas.sync.views import (
    AdminDashboardView,
    KitchenView,
    OrderTrackingView,
    SyncedView,
    TableBoardView,
)


@pytest.fixture
def api(client):
    return OrderingClient(http_client=client)


def offline_client(handler) -> OrderingClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return OrderingClient(http_client=http)


# =============================================================================
# CLIENT
# =============================================================================

async def test_client_maps_not_found(api):
    with pytest.raises(NotFoundError):
        await api.get_order(404)


async def test_client_maps_conflict_with_suggestion(api):
    table = TableCreate(table_number=3, location_id="ilha", seats=4)
    await api.create_table(table)

    with pytest.raises(ConflictError) as exc_info:
        await api.create_table(table)

    assert "already exists" in exc_info.value.detail
    assert exc_info.value.suggestion == "Pick a different table number"


async def test_client_maps_request_validation(api):
    with pytest.raises(ValidationError) as exc_info:
        await api._request("PATCH", "/api/orders/1/status", json={"status": "paid"})

    assert exc_info.value.problems


async def test_client_maps_network_failure():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientError):
        await offline_client(refuse).kitchen_queue()


async def test_client_maps_server_error():
    api = offline_client(lambda request: httpx.Response(500, json={"detail": "boom"}))

    with pytest.raises(TransientError, match="boom"):
        await api.list_tables("ilha")


async def test_client_maps_unreadable_body():
    api = offline_client(lambda request: httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(TransientError):
        await api.kitchen_queue("ilha")


async def test_client_maps_unexpected_payload():
    api = offline_client(lambda request: httpx.Response(200, json={"tickets": "none"}))

    with pytest.raises(TransientError, match="KitchenQueueResponse"):
        await api.kitchen_queue("ilha")


# =============================================================================
# VIEWS
# =============================================================================

async def test_status_change_reaches_every_viewer(api, menu, make_submission):
    created = await api.create_order(make_submission(menu["Tacos al Pastor"]))
    order_id = created.order.id
    kitchen = KitchenView(api, "ilha")
    admin = AdminDashboardView(api, "ilha")
    tracking = OrderTrackingView(api, order_id)
    for view in (kitchen, admin, tracking):
        await view.refresh()

    await admin.set_status(order_id, OrderStatus.READY)

    # The writer sees its own change immediately
    assert admin.snapshot.orders.orders[0].status == OrderStatus.READY
    assert admin.snapshot.stats.total_orders == 1

    # Everyone else on their next refresh
    assert tracking.snapshot.status == OrderStatus.RECEIVED
    await kitchen.refresh()
    await tracking.refresh()
    assert kitchen.snapshot.tickets[0].order.status == OrderStatus.READY
    assert tracking.snapshot.status == OrderStatus.READY
    assert [step.status for step in tracking.snapshot.steps if step.done] == [
        OrderStatus.RECEIVED, OrderStatus.PREPARING, OrderStatus.READY,
    ]


async def test_mutation_refreshes_even_when_it_fails(api):
    board = TableBoardView(api, "ilha")
    await board.add_table(1, 4)

    with pytest.raises(ConflictError):
        await board.add_table(1, 2)

    assert board.refresh_count == 2
    assert [t.table_number for t in board.snapshot] == [1]


async def test_table_board_lists_available_tables(api):
    board = TableBoardView(api, "ilha")
    first = await board.add_table(1, 4)
    await board.add_table(2, 2)

    await board.set_status(first.id, TableStatus.MAINTENANCE)

    assert [t.table_number for t in board.available] == [2]


class FlakyView(SyncedView[int]):
    topics = frozenset({EventType.ORDERS})

    def __init__(self, fail_after: int = 1, interval: float = 60):
        super().__init__(client=None, interval=interval, location_id="ilha")
        self.calls = 0
        self.fail_after = fail_after

    async def fetch(self) -> int:
        self.calls += 1
        if self.calls > self.fail_after:
            raise TransientError("service down")
        return self.calls


async def test_failed_refresh_keeps_previous_snapshot():
    view = FlakyView(fail_after=1)

    assert await view.refresh() == 1
    assert await view.refresh() == 1

    assert view.snapshot == 1
    assert isinstance(view.last_error, TransientError)


async def test_push_event_triggers_refresh_before_poll_interval():
    view = FlakyView(fail_after=100, interval=60)
    view.start()
    try:
        while view.refresh_count < 1:
            await asyncio.sleep(0)

        view.notify(SyncEvent(type=EventType.ORDERS, data={"location_id": "ilha"}))

        async def second_refresh():
            while view.refresh_count < 2:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(second_refresh(), timeout=1)
    finally:
        await view.stop()


async def test_garbled_response_does_not_stop_polling():
    api = offline_client(lambda request: httpx.Response(200, text="maintenance"))
    view = KitchenView(api, "ilha", interval=0.01)
    attempts = []
    refresh = view.refresh

    async def counted_refresh():
        attempts.append(await refresh())

    view.refresh = counted_refresh
    view.start()
    try:
        async def three_attempts():
            while len(attempts) < 3:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(three_attempts(), timeout=1)

        assert attempts[:3] == [None, None, None]
        assert isinstance(view.last_error, TransientError)
    finally:
        await view.stop()


def test_views_ignore_unrelated_events():
    view = FlakyView()

    assert view.wants(SyncEvent(type=EventType.ORDERS, data={"location_id": "ilha"}))
    assert view.wants(SyncEvent(type=EventType.ORDERS))
    assert not view.wants(SyncEvent(type=EventType.ORDERS, data={"location_id": "talatona"}))
    assert not view.wants(SyncEvent(type=EventType.TABLES, data={"location_id": "ilha"}))


def test_tracking_view_only_follows_its_order():
    view = OrderTrackingView(client=None, order_id=12)

    assert view.wants(SyncEvent(type=EventType.ORDER_STATUS, data={"order_id": 12}))
    assert not view.wants(SyncEvent(type=EventType.ORDER_STATUS, data={"order_id": 13}))


# =============================================================================
# PUSH LISTENER
# =============================================================================

class FakeSocket:
    def __init__(self, messages):
        self.messages = messages

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for message in self.messages:
            yield message


async def test_listener_backs_off_then_gives_up():
    delays = []
    attempts = []

    def refuse(url):
        attempts.append(url)
        raise OSError("connection refused")

    async def record_sleep(delay):
        delays.append(delay)

    listener = PushListener(url="ws://test/ws", max_attempts=5, base_delay=1.0, connect=refuse, sleep=record_sleep)
    await listener.run()

    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]
    assert len(attempts) == 6
    assert not listener.connected


async def test_listener_dispatches_events_to_subscribers():
    messages = [
        SyncEvent(type=EventType.ORDERS, data={"order_id": 1}).model_dump_json(),
        "not an event",
        SyncEvent(type=EventType.TABLES, data={"table_id": 3}).model_dump_json(),
    ]
    received = []
    listener = PushListener(url="ws://test/ws", max_attempts=0, connect=lambda url: FakeSocket(messages))
    listener.subscribe(EventType.ORDERS, received.append)
    removed = []
    unsubscribe = listener.subscribe(EventType.TABLES, removed.append)
    unsubscribe()

    await listener.run()

    assert [event.data for event in received] == [{"order_id": 1}]
    assert removed == []


async def test_attached_view_is_woken_by_push():
    messages = [SyncEvent(type=EventType.ORDERS, data={"location_id": "ilha"}).model_dump_json()]
    view = FlakyView()
    listener = PushListener(url="ws://test/ws", max_attempts=0, connect=lambda url: FakeSocket(messages))
    notified = []
    view.notify = notified.append

    detach = listener.attach(view)
    await listener.run()
    detach()

    assert [event.type for event in notified] == [EventType.ORDERS]
    assert listener.url == "ws://test/ws"


def test_push_url_uses_subscribed_topics():
    assert push_url("https://api.lastortillas.ao/", [EventType.ORDERS, EventType.ORDER_STATUS]) == (
        "wss://api.lastortillas.ao/ws?topics=order-status,orders"
    )
    assert push_url("http://localhost:8001") == "ws://localhost:8001/ws"
