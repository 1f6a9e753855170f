"""Tests for the consumer-side selection view."""

import asyncio

import pytest

from tests.mocks.models import TUESDAY, WEDNESDAY, make_booking
from tests.mocks.services import wait_until
from venue_availability.errors import GroupLookupFailed, SubscriptionFailed
from venue_availability.services.view import AvailabilityView, ViewStatus


@pytest.mark.asyncio
async def test_select_goes_loading_then_ready(engine):
    seen = []
    view = AvailabilityView(engine, on_snapshot=seen.append)

    snapshot = await view.select("c1", WEDNESDAY)

    assert [s.status for s in seen] == [ViewStatus.LOADING, ViewStatus.READY]
    assert snapshot.status is ViewStatus.READY
    assert len(snapshot.slots) == 3
    assert view.selection == ("c1", WEDNESDAY)
    await view.close()


@pytest.mark.asyncio
async def test_closed_day_is_ready_and_empty(engine):
    view = AvailabilityView(engine)
    snapshot = await view.select("c1", TUESDAY)
    assert snapshot.status is ViewStatus.READY
    assert snapshot.slots == ()
    await view.close()


@pytest.mark.asyncio
async def test_failure_shows_error(engine, provider):
    provider.fail_on["resolve_court_group"] = RuntimeError("timeout")
    view = AvailabilityView(engine)

    snapshot = await view.select("c1", WEDNESDAY)

    assert snapshot.status is ViewStatus.ERROR
    assert isinstance(snapshot.error, GroupLookupFailed)
    assert snapshot.slots == ()


@pytest.mark.asyncio
async def test_retry_after_error(engine, provider):
    provider.fail_on["resolve_court_group"] = RuntimeError("timeout")
    view = AvailabilityView(engine)
    await view.select("c1", WEDNESDAY)

    del provider.fail_on["resolve_court_group"]
    snapshot = await view.retry()

    assert snapshot.status is ViewStatus.READY
    assert len(snapshot.slots) == 3
    await view.close()


@pytest.mark.asyncio
async def test_live_update_reaches_view(engine, provider):
    view = AvailabilityView(engine)
    await view.select("c1", WEDNESDAY)

    provider.add_booking(make_booking(court_id="c2"))
    await wait_until(
        lambda: any(not s.is_available for s in view.snapshot.slots)
    )
    await view.close()


@pytest.mark.asyncio
async def test_superseded_selection_discarded(engine, provider):
    provider.gates["list_templates"] = gate = asyncio.Event()
    view = AvailabilityView(engine)

    first = asyncio.create_task(view.select("c1", WEDNESDAY))
    await wait_until(lambda: provider.calls["list_templates"] == 1)
    second = asyncio.create_task(view.select("c3", WEDNESDAY))
    await wait_until(lambda: provider.calls["list_templates"] == 2)

    gate.set()
    await asyncio.gather(first, second)

    assert view.snapshot.court_id == "c3"
    assert view.snapshot.status is ViewStatus.READY
    # Only the current selection keeps a subscription
    assert engine.open_watches == 1
    assert [scope.court_ids for scope, _, _ in provider.listeners] == [frozenset({"c3"})]
    await view.close()


@pytest.mark.asyncio
async def test_switching_releases_previous_watch(engine, provider):
    view = AvailabilityView(engine)
    await view.select("c1", WEDNESDAY)
    await view.select("c3", WEDNESDAY)

    assert engine.open_watches == 1
    assert len(provider.listeners) == 1


@pytest.mark.asyncio
async def test_lost_subscription_keeps_grid_stale(engine, provider):
    view = AvailabilityView(engine)
    await view.select("c1", WEDNESDAY)

    provider.lose_connection()
    await wait_until(lambda: view.snapshot.stale)

    assert view.snapshot.status is ViewStatus.READY
    assert len(view.snapshot.slots) == 3
    assert isinstance(view.snapshot.error, SubscriptionFailed)

    snapshot = await view.retry()
    assert snapshot.stale is False
    assert snapshot.error is None
    await view.close()


@pytest.mark.asyncio
async def test_subscribe_failure_on_select_is_stale(engine, provider):
    provider.fail_on["subscribe_to_changes"] = RuntimeError("refused")
    view = AvailabilityView(engine)

    snapshot = await view.select("c1", WEDNESDAY)

    assert snapshot.status is ViewStatus.READY
    assert snapshot.stale is True
    await view.close()


@pytest.mark.asyncio
async def test_close_releases_watch(engine, provider):
    async with AvailabilityView(engine) as view:
        await view.select("c1", WEDNESDAY)
    assert engine.open_watches == 0
    assert provider.listeners == []
