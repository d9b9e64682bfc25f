"""Tests for DeviceStateTracker and ConcurrencyCounter."""

import threading
import time

import pytest

from deployer.device_state import ConcurrencyCounter, DeviceState, DeviceStateTracker
from deployer.errors import CounterTimeoutError, InvalidDeviceStateError, SyncException


class TestDiscoveryStates:
    """Discovery state transitions."""

    def test_unknown_by_default(self, tracker):
        assert tracker.get_state("cert-1") == DeviceState.UNKNOWN

    def test_init_discovery_requests(self, tracker):
        assert tracker.init_discovery("cert-1") == DeviceState.REQUESTED
        assert tracker.get_state("cert-1") == DeviceState.REQUESTED

    @pytest.mark.parametrize("busy", [DeviceState.REQUESTED, DeviceState.IN_PROGRESS])
    def test_init_discovery_busy_raises(self, tracker, busy):
        tracker.set_state("cert-1", busy)
        with pytest.raises(SyncException):
            tracker.init_discovery("cert-1")
        assert tracker.get_state("cert-1") == busy

    def test_init_discovery_busy_without_fail(self, tracker):
        tracker.set_state("cert-1", DeviceState.IN_PROGRESS)
        assert tracker.init_discovery("cert-1", fail_if_in_progress=False) == DeviceState.IN_PROGRESS

    @pytest.mark.parametrize("done", [DeviceState.SUCCESS, DeviceState.FAILED])
    def test_init_discovery_after_finish(self, tracker, done):
        tracker.set_state("cert-1", done)
        assert tracker.init_discovery("cert-1") == DeviceState.REQUESTED

    def test_concurrent_init_discovery_admits_one(self, tracker):
        admitted = []
        rejected = []
        barrier = threading.Barrier(10)

        def worker():
            barrier.wait()
            try:
                tracker.init_discovery("cert-1")
                admitted.append(1)
            except SyncException:
                rejected.append(1)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(admitted) == 1
        assert len(rejected) == 9

    def test_set_state_accepts_strings(self, tracker):
        assert tracker.set_state("cert-1", "success") == DeviceState.SUCCESS

    @pytest.mark.parametrize("bad", ["bogus", "unknown", DeviceState.UNKNOWN])
    def test_set_state_rejects_invalid(self, tracker, bad):
        with pytest.raises(InvalidDeviceStateError):
            tracker.set_state("cert-1", bad)

    def test_reset(self, tracker):
        tracker.set_state("cert-1", DeviceState.FAILED)
        tracker.reset("cert-1")
        assert tracker.get_state("cert-1") == DeviceState.UNKNOWN
        assert tracker.states() == {}


class TestExclusiveSlots:
    """Per-device exclusivity."""

    def test_block_and_unblock(self, tracker):
        assert tracker.block_device("cert-1") is True
        assert tracker.block_device("cert-1") is False
        assert tracker.running_devices() == ["cert-1"]

        tracker.unblock_device("cert-1")
        assert tracker.running_count() == 0

    def test_wait_until_available_returns_result_and_releases(self, tracker):
        assert tracker.wait_until_available("cert-1", lambda: 42) == 42
        assert tracker.running_devices() == []
        assert tracker.counter.get("large_child_procs") == 0

    def test_slot_released_on_error(self, tracker):
        def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            tracker.wait_until_available("cert-1", boom)

        assert tracker.running_devices() == []
        assert tracker.counter.get("large_child_procs") == 0

    def test_same_device_is_serialized(self, tracker):
        active = []
        overlaps = []

        def operation():
            active.append(1)
            if len(active) > 1:
                overlaps.append(1)
            time.sleep(0.02)
            active.pop()

        threads = [
            threading.Thread(target=tracker.wait_until_available, args=("cert-1", operation))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_times_out_waiting_for_device(self, tracker):
        tracker.block_device("cert-1")
        with pytest.raises(SyncException):
            tracker.wait_until_available("cert-1", lambda: None, timeout=0.05)
        assert tracker.running_devices() == ["cert-1"]

    def test_heavy_operations_are_bounded(self):
        tracker = DeviceStateTracker(
            large_process_concurrency=2,
            large_process_max_runtime=5,
            counter=ConcurrencyCounter(poll_interval=0.01),
            lock_poll_interval=0.01,
        )
        lock = threading.Lock()
        active = [0]
        peak = [0]

        def operation():
            with lock:
                active[0] += 1
                peak[0] = max(peak[0], active[0])
            time.sleep(0.03)
            with lock:
                active[0] -= 1

        threads = [
            threading.Thread(target=tracker.wait_until_available, args=(f"cert-{i}", operation))
            for i in range(6)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert peak[0] == 2

    def test_from_settings(self, settings):
        tracker = DeviceStateTracker.from_settings(settings)
        assert tracker.large_process_concurrency == settings.concurrency.large_process_concurrency
        assert tracker.large_process_max_runtime == settings.concurrency.large_process_max_runtime


class TestConcurrencyCounter:
    def test_increment_and_decrement(self):
        counter = ConcurrencyCounter()
        assert counter.increment("x") == 1
        assert counter.increment("x") == 2
        assert counter.decrement("x") == 1
        assert counter.get("x") == 1

    def test_decrement_never_goes_negative(self):
        counter = ConcurrencyCounter()
        assert counter.decrement("x") == 0
        assert counter.get("x") == 0

    def test_increment_if_less_than(self):
        counter = ConcurrencyCounter()
        assert counter.increment_if_less_than(1, "x") == 1
        assert counter.increment_if_less_than(1, "x") is False

    def test_wait_on_threshold_times_out(self):
        counter = ConcurrencyCounter(poll_interval=0.01)
        counter.increment("x")

        with pytest.raises(CounterTimeoutError):
            counter.wait_on_threshold(1, 0.05, lambda: None, "x")
        assert counter.get("x") == 1

    def test_wait_on_threshold_runs_when_freed(self):
        counter = ConcurrencyCounter(poll_interval=0.01)
        counter.increment("x")
        threading.Timer(0.05, counter.decrement, args=("x",)).start()

        assert counter.wait_on_threshold(1, 2, lambda: "ran", "x") == "ran"
        assert counter.get("x") == 0
