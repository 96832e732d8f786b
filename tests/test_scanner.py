"""Tests for the discovery/refresh scanner state machine."""

import asyncio
import threading

import pytest

from autovoter.events import ScanningProgressEvent, StatusEvent, SummaryEvent, TargetsEvent
from autovoter.models import RefreshMode
from autovoter.scanner import ScanState, Scanner, SnapshotBuilder, priority_list
from autovoter.utils import epoch_id
from config.settings import RECOVER_PAUSE, SCHEDULED_TICK, WEEK

from conftest import EPOCH_CLOSE, ONE, FakeMarket, make_target


@pytest.fixture
def pools(chain):
    chain.add_pool("0xa", "vAMM-A/USDC", 100 * ONE, fees=150, incentives=50)
    chain.add_pool("0xb", "vAMM-B/USDC", 50 * ONE, fees=150)
    chain.add_pool("0xc", "sAMM-C/USDC", 10 * ONE, incentives=50)
    return chain


@pytest.fixture
def scanner(pools, store, strategy, events, ledger, clock):
    market = FakeMarket(liquidity={"0xa": 250_000.0, "0xb": 50_000.0})
    return Scanner(
        pools, market, store, strategy, events, ledger=ledger, clock=clock, fetch_interval=30, batch_delay=0
    )


def _step(scanner):
    async def go():
        delay = await scanner.step()
        await scanner.ledger_updates_done()
        return delay

    return asyncio.run(go())


class TestSnapshotBuilder:
    def test_values_targets_and_summary(self, pools, events, clock):
        builder = SnapshotBuilder(pools, FakeMarket(), events, clock=clock, batch_size=2, batch_delay=0)
        snapshot = asyncio.run(builder.build())

        a = snapshot.target("0xa")
        assert a.fees_usd == pytest.approx(150.0)
        assert a.incentives_usd == pytest.approx(50.0)
        assert a.apr == pytest.approx(200.0 / 100.0 * 52 * 100)
        assert a.emissions_share == pytest.approx(10_000 * 100 / 160)
        summary = snapshot.summary
        assert summary.total_weight == 160 * ONE
        assert summary.epoch_close == EPOCH_CLOSE
        assert summary.active_pools == 3
        assert summary.total_rewards_usd == pytest.approx(400.0 + 10_000.0)

    def test_progress_is_reported_per_batch(self, pools, events, recorder, clock):
        builder = SnapshotBuilder(pools, FakeMarket(), events, clock=clock, batch_size=2, batch_delay=0)
        asyncio.run(builder.build())
        progress = recorder.of(ScanningProgressEvent)
        assert [(p.scanned, p.total) for p in progress] == [(2, 3), (3, 3)]

    def test_failed_target_is_skipped(self, pools, events, recorder, clock):
        pools.broken_targets = {"0xb"}
        snapshot = asyncio.run(SnapshotBuilder(pools, FakeMarket(), events, clock=clock, batch_delay=0).build())
        assert [t.address for t in snapshot.targets] == ["0xa", "0xc"]
        assert recorder.of(ScanningProgressEvent)[-1].active == 2

    def test_missing_prices_mean_zero(self, pools, events, clock):
        snapshot = asyncio.run(
            SnapshotBuilder(pools, FakeMarket(prices={}), events, clock=clock, batch_delay=0).build()
        )
        assert snapshot.summary.governance_price == 0.0
        assert all(t.total_rewards_usd == 0 and t.apr == 0 for t in snapshot.targets)


class TestScheduledMode:
    def test_cold_start_syncs_then_sleeps(self, scanner, store, pools, clock):
        assert _step(scanner) == SCHEDULED_TICK
        assert scanner.state == ScanState.SLEEPING
        assert store.epoch_close == EPOCH_CLOSE
        assert pools.reads == 0

    def test_wakes_inside_window_full_then_targeted(self, scanner, store, pools, clock, recorder):
        clock.now = EPOCH_CLOSE - 600
        _step(scanner)
        assert scanner.state == ScanState.FULL_SCAN
        assert scanner.priority == ["0xa", "0xb", "0xc"]
        assert store.current().version > 0
        assert recorder.of(SummaryEvent) and recorder.of(TargetsEvent)

        pools.reads = 0
        _step(scanner)
        assert scanner.state == ScanState.TARGETED_SCAN
        assert pools.reads == 3
        assert recorder.of(StatusEvent)[-1].message == "Targeted Update Complete"

    def test_rollover_advances_close_by_a_week(self, scanner, store, clock):
        store.set_epoch_close(EPOCH_CLOSE)
        clock.now = EPOCH_CLOSE + 10
        _step(scanner)
        assert store.epoch_close == EPOCH_CLOSE + WEEK
        assert scanner.state == ScanState.SLEEPING

    def test_requested_scan_breaks_sleep(self, scanner, pools):
        _step(scanner)
        scanner.request_scan()
        _step(scanner)
        assert scanner.state == ScanState.FULL_SCAN
        assert pools.reads == 3

    def test_scan_updates_index_yield(self, scanner, ledger, clock):
        clock.now = EPOCH_CLOSE - 600
        _step(scanner)
        record = ledger.epochs[epoch_id(EPOCH_CLOSE)]
        # only 0xa clears the liquidity floor
        assert record.index_apr == pytest.approx(round(200.0 / 100.0 * 52 * 100, 2))

    def test_index_is_saved_off_the_event_loop(self, scanner, ledger, clock, monkeypatch):
        threads = []
        save = ledger.database.save_epochs

        def recording_save(epochs):
            threads.append(threading.get_ident())
            save(epochs)

        monkeypatch.setattr(ledger.database, "save_epochs", recording_save)
        clock.now = EPOCH_CLOSE - 600
        _step(scanner)
        assert threads and threading.get_ident() not in threads
        assert epoch_id(EPOCH_CLOSE) in ledger.database.load_epochs()

    def test_runs_and_stops_on_loops_started_after_construction(self, scanner):
        # built outside any loop, as the CLI does before asyncio.run
        async def run_then_stop():
            task = asyncio.ensure_future(scanner.run())
            await asyncio.sleep(0.05)
            assert scanner.state == ScanState.SLEEPING
            scanner.stop()
            await asyncio.wait_for(task, timeout=5)

        asyncio.run(run_then_stop())
        asyncio.run(run_then_stop())
        assert not scanner._running


class TestImmediateMode:
    def test_scans_regardless_of_epoch_and_waits_fetch_interval(self, scanner, strategy, pools):
        strategy.update(refresh_mode=RefreshMode.IMMEDIATE)
        assert _step(scanner) == 30
        assert pools.reads == 3

    def test_failure_resets_priority_and_recovers(self, scanner, strategy, pools, recorder):
        strategy.update(refresh_mode=RefreshMode.IMMEDIATE)
        _step(scanner)
        assert scanner.priority is not None

        pools.fail_reads = True
        assert _step(scanner) == RECOVER_PAUSE
        assert scanner.state == ScanState.RECOVER
        assert scanner.priority is None
        assert recorder.of(StatusEvent)[-1].message == "Fetch failed. Retrying..."

        pools.fail_reads = False
        _step(scanner)
        assert scanner.state == ScanState.FULL_SCAN

    def test_empty_scan_forces_full_discovery(self, scanner, strategy, pools, store):
        strategy.update(refresh_mode=RefreshMode.IMMEDIATE)
        _step(scanner)
        version = store.version
        pools.pools = []
        _step(scanner)
        assert scanner.priority is None
        assert store.version == version


def test_priority_list_orders_by_total_rewards():
    targets = [make_target("x", 1, 5.0), make_target("y", 1, 50.0), make_target("z", 1, 10.0)]
    assert priority_list(targets, size=2) == ["y", "z"]
