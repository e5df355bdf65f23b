# tests/test_sampler.py

from __future__ import annotations

import asyncio

import pytest

from fieldtrack.core.ports import Position, SessionMarker
from fieldtrack.core.state import AppState
from fieldtrack.errors import PermissionDenied
from fieldtrack.sampler.marker import JsonSessionMarkerStore
from fieldtrack.sampler.providers import IngestorSink
from fieldtrack.sampler.sampler import ClientSampler, SamplerState

from .fakes import FakeGeocoder, FakeLocationProvider, FakeSink, GatedSink, MemoryMarkerRepo

T0 = 1_772_445_600.0


def _sampler(
    provider: FakeLocationProvider | None = None,
    sink=None,
    markers: MemoryMarkerRepo | None = None,
    *,
    geocoder=None,
    owns_geocoder: bool = False,
    now: float = T0,
    interval: float = 0.01,
) -> ClientSampler:
    return ClientSampler(
        provider or FakeLocationProvider(),
        sink if sink is not None else FakeSink(),
        markers if markers is not None else MemoryMarkerRepo(),
        geocoder=geocoder,
        owns_geocoder=owns_geocoder,
        interval_seconds=interval,
        marker_max_age_seconds=3600.0,
        clock=lambda: now,
    )


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_start_samples_immediately_and_persists_marker() -> None:
    sink = FakeSink()
    markers = MemoryMarkerRepo()
    geo = FakeGeocoder("Main St 1, Springfield")
    s = _sampler(sink=sink, markers=markers, geocoder=geo, interval=60.0)

    assert await s.start(7) is True

    assert s.state == SamplerState.ACTIVE
    assert s.assignment_id == 7
    assert len(sink.records) == 1
    first = sink.records[0]
    assert first["assignment_id"] == 7
    assert first["tracking_status"] == "auto"
    assert first["address"] == "Main St 1, Springfield"
    assert first["recorded_at"] == T0
    assert markers.marker == SessionMarker(assignment_id=7, started_at=T0)

    await s.stop()
    assert s.state == SamplerState.IDLE
    assert markers.marker is None
    assert s.assignment_id is None


@pytest.mark.asyncio
async def test_periodic_ticks_continue_until_stop() -> None:
    sink = FakeSink()
    s = _sampler(sink=sink, interval=0.01)

    await s.start(1)
    await _wait_for(lambda: len(sink.records) >= 3)
    await s.stop()

    count = len(sink.records)
    await asyncio.sleep(0.05)
    assert len(sink.records) == count


@pytest.mark.asyncio
async def test_foreground_denied_raises_and_stays_idle() -> None:
    provider = FakeLocationProvider(foreground=False)
    markers = MemoryMarkerRepo()
    s = _sampler(provider, markers=markers)

    with pytest.raises(PermissionDenied):
        await s.start(1)

    assert s.state == SamplerState.IDLE
    assert markers.saves == 0
    assert provider.fixes == 0


@pytest.mark.asyncio
async def test_background_denied_is_not_fatal() -> None:
    sink = FakeSink()
    s = _sampler(FakeLocationProvider(background=False), sink=sink, interval=60.0)
    assert await s.start(1)
    assert s.is_active
    assert len(sink.records) == 1
    await s.stop()


@pytest.mark.asyncio
async def test_start_is_idempotent_while_active() -> None:
    provider = FakeLocationProvider()
    s = _sampler(provider, interval=60.0)

    await s.start(1)
    assert await s.start(1) is True
    assert await s.start(2) is True

    assert provider.foreground_requests == 1
    assert s.assignment_id == 1
    await s.stop()


@pytest.mark.asyncio
async def test_rejection_is_tolerated_and_retried() -> None:
    sink = FakeSink(reject_first=2)
    s = _sampler(sink=sink, interval=0.01)

    await s.start(3)
    assert s.is_active
    await _wait_for(lambda: len(sink.records) >= 1)
    await s.stop()

    assert sink.rejected == 2
    assert s.samples_failed >= 2


@pytest.mark.asyncio
async def test_gps_failure_counts_and_keeps_session() -> None:
    provider = FakeLocationProvider()
    provider.fail_next = True
    sink = FakeSink()
    s = _sampler(provider, sink=sink, interval=60.0)

    await s.start(1)
    assert s.is_active
    assert s.samples_failed == 1
    assert sink.records == []

    assert await s.record_now() is True
    assert sink.records[0]["tracking_status"] == "manual"
    await s.stop()


@pytest.mark.asyncio
async def test_missing_address_falls_back_to_coordinates() -> None:
    sink = FakeSink()
    provider = FakeLocationProvider(Position(latitude=51.5074, longitude=-0.1278))
    s = _sampler(provider, sink=sink, geocoder=FakeGeocoder(None), interval=60.0)

    await s.start(1)
    await s.stop()
    assert sink.records[0]["address"] == "51.507400, -0.127800"


@pytest.mark.asyncio
async def test_record_now_requires_active_session() -> None:
    sink = FakeSink()
    s = _sampler(sink=sink)
    assert await s.record_now() is False
    assert sink.records == []


@pytest.mark.asyncio
async def test_resume_fresh_marker_keeps_original_start() -> None:
    markers = MemoryMarkerRepo(marker=SessionMarker(assignment_id=9, started_at=T0 - 600))
    s = _sampler(markers=markers, interval=60.0)

    assert await s.resume() is True
    assert s.assignment_id == 9
    assert s.started_at == T0 - 600
    assert markers.marker == SessionMarker(assignment_id=9, started_at=T0 - 600)
    await s.stop()


@pytest.mark.asyncio
async def test_resume_expired_or_missing_marker() -> None:
    markers = MemoryMarkerRepo(marker=SessionMarker(assignment_id=9, started_at=T0 - 7200))
    s = _sampler(markers=markers)
    assert await s.resume() is False
    assert markers.marker is None
    assert s.state == SamplerState.IDLE

    assert await s.resume() is False


@pytest.mark.asyncio
async def test_resume_permission_denied_clears_marker() -> None:
    markers = MemoryMarkerRepo(marker=SessionMarker(assignment_id=9, started_at=T0 - 60))
    s = _sampler(FakeLocationProvider(foreground=False), markers=markers)

    with pytest.raises(PermissionDenied):
        await s.resume()
    assert markers.marker is None


@pytest.mark.asyncio
async def test_stop_can_keep_marker_for_next_launch() -> None:
    markers = MemoryMarkerRepo()
    s = _sampler(markers=markers, interval=60.0)
    await s.start(4)
    await s.stop(clear_marker=False)
    assert s.state == SamplerState.IDLE
    assert markers.marker is not None and markers.marker.assignment_id == 4


@pytest.mark.asyncio
async def test_stop_lets_inflight_submission_finish() -> None:
    sink = GatedSink()
    s = _sampler(sink=sink, interval=0.01)

    await s.start(2)
    await asyncio.wait_for(sink.entered.wait(), timeout=2.0)
    await s.stop()
    assert s.state == SamplerState.IDLE

    sink.release.set()
    await _wait_for(lambda: len(sink.records) == 2)
    assert sink.records[1]["assignment_id"] == 2
    assert s.samples_recorded == 2


@pytest.mark.asyncio
async def test_stop_during_permission_request_wins() -> None:
    provider = FakeLocationProvider()
    provider.gate = asyncio.Event()
    sink = FakeSink()
    markers = MemoryMarkerRepo()
    s = _sampler(provider, sink=sink, markers=markers, interval=0.01)

    starting = asyncio.create_task(s.start(5))
    await _wait_for(lambda: provider.foreground_requests == 1)
    assert s.state == SamplerState.REQUESTING_PERMISSION

    await s.stop()
    provider.gate.set()

    assert await starting is False
    assert s.state == SamplerState.IDLE
    assert s.assignment_id is None
    assert markers.saves == 0
    await asyncio.sleep(0.05)
    assert sink.records == []


@pytest.mark.asyncio
async def test_concurrent_start_shares_denied_permission() -> None:
    provider = FakeLocationProvider(foreground=False)
    provider.gate = asyncio.Event()
    markers = MemoryMarkerRepo()
    s = _sampler(provider, markers=markers)

    first = asyncio.create_task(s.start(1))
    await _wait_for(lambda: provider.foreground_requests == 1)
    second = asyncio.create_task(s.start(1))
    await asyncio.sleep(0)
    provider.gate.set()

    with pytest.raises(PermissionDenied):
        await first
    with pytest.raises(PermissionDenied):
        await second
    assert provider.foreground_requests == 1
    assert s.state == SamplerState.IDLE
    assert markers.saves == 0


@pytest.mark.asyncio
async def test_concurrent_start_shares_granted_session() -> None:
    provider = FakeLocationProvider()
    provider.gate = asyncio.Event()
    sink = FakeSink()
    markers = MemoryMarkerRepo()
    s = _sampler(provider, sink=sink, markers=markers, interval=60.0)

    first = asyncio.create_task(s.start(1))
    await _wait_for(lambda: provider.foreground_requests == 1)
    second = asyncio.create_task(s.start(1))
    await asyncio.sleep(0)
    provider.gate.set()

    assert await first is True
    assert await second is True
    assert provider.foreground_requests == 1
    assert markers.saves == 1
    assert len(sink.records) == 1
    await s.stop()


@pytest.mark.asyncio
async def test_aclose_keeps_marker_and_closes_owned_geocoder() -> None:
    markers = MemoryMarkerRepo()
    owned = FakeGeocoder()
    s = _sampler(markers=markers, geocoder=owned, owns_geocoder=True, interval=60.0)
    await s.start(6)

    await s.aclose()
    assert s.state == SamplerState.IDLE
    assert markers.marker is not None and markers.marker.assignment_id == 6
    assert owned.closed

    borrowed = FakeGeocoder()
    other = _sampler(geocoder=borrowed, interval=60.0)
    await other.aclose()
    assert not borrowed.closed


@pytest.mark.asyncio
async def test_sampler_feeds_the_ingestor(state: AppState, started: int, tmp_path) -> None:
    markers = JsonSessionMarkerStore(tmp_path / "marker.json")
    s = ClientSampler(
        FakeLocationProvider(Position(latitude=40.0, longitude=-74.0, accuracy=3.0)),
        IngestorSink(state.ingestor, "alice"),
        markers,
        interval_seconds=60.0,
    )

    await s.start(started)
    assert (tmp_path / "marker.json").exists()
    assert await s.record_now()
    await s.stop()

    stats = state.analytics.statistics(assignment_id=started)
    assert stats["total_locations"] == 2
    assert stats["auto_tracked"] == 1
    assert stats["manual_tracked"] == 1
    assert markers.load() is None
