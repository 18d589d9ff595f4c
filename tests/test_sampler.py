from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from conftest import at, failing_probe, scripted_probe
from focusdebt.models import RawWindow
from focusdebt.probe import NoActiveWindow, PlatformProbe, ProbeStrategy, ProbeTimeout
from focusdebt.sampler import ActivitySampler


class BlockingStrategy(ProbeStrategy):
    name = "blocking"

    def __init__(self) -> None:
        self.release = threading.Event()

    def query(self, timeout: float) -> RawWindow:
        self.release.wait(5)
        return RawWindow("code", "")


class Recorder:
    def __init__(self) -> None:
        self.samples = []
        self.gaps = []

    def on_sample(self, sample) -> None:
        self.samples.append(sample)

    def on_gap(self, timestamp, error) -> None:
        self.gaps.append((timestamp, error))


def make_sampler(probe: PlatformProbe, recorder: Recorder, timeout_ms: int = 500) -> ActivitySampler:
    ticks = iter(range(1000))
    return ActivitySampler(
        probe,
        interval=timedelta(milliseconds=10),
        probe_timeout=timedelta(milliseconds=timeout_ms),
        on_sample=recorder.on_sample,
        on_gap=recorder.on_gap,
        clock=lambda: at(next(ticks)),
    )


def test_successful_tick_produces_normalized_sample() -> None:
    recorder = Recorder()
    sampler = make_sampler(
        scripted_probe(RawWindow("firefox.exe", "GitHub - Mozilla Firefox")), recorder
    )
    try:
        sample = sampler.tick()
    finally:
        sampler.close()

    assert sample is not None
    assert recorder.samples == [sample]
    assert sample.timestamp == at(0)
    assert sample.app_name == "firefox"
    assert sample.domain == "github.com"
    assert recorder.gaps == []


def test_failed_probe_reports_gap_with_tick_time() -> None:
    recorder = Recorder()
    sampler = make_sampler(failing_probe(), recorder)
    try:
        assert sampler.tick() is None
        assert sampler.tick() is None
    finally:
        sampler.close()

    assert recorder.samples == []
    assert [timestamp for timestamp, _ in recorder.gaps] == [at(0), at(1)]
    assert all(isinstance(error, NoActiveWindow) for _, error in recorder.gaps)
    assert sampler.consecutive_failures == 2


def test_success_resets_failure_count() -> None:
    recorder = Recorder()
    sampler = make_sampler(scripted_probe(NoActiveWindow("gone"), "code"), recorder)
    try:
        sampler.tick()
        sampler.tick()
    finally:
        sampler.close()

    assert sampler.consecutive_failures == 0
    assert len(recorder.samples) == 1


def test_slow_probe_times_out_and_is_not_stacked() -> None:
    recorder = Recorder()
    blocking = BlockingStrategy()
    sampler = make_sampler(PlatformProbe([blocking]), recorder, timeout_ms=50)
    try:
        assert sampler.tick() is None
        assert sampler.tick() is None
    finally:
        blocking.release.set()
        sampler.close()

    assert len(recorder.gaps) == 2
    assert all(isinstance(error, ProbeTimeout) for _, error in recorder.gaps)
    assert "still running" in str(recorder.gaps[1][1])


def test_run_until_stopped_ticks_until_event_is_set() -> None:
    recorder = Recorder()
    sampler = make_sampler(scripted_probe("code"), recorder)
    stop = threading.Event()

    def stop_after_samples(sample) -> None:
        recorder.on_sample(sample)
        if len(recorder.samples) >= 3:
            stop.set()

    sampler._on_sample = stop_after_samples
    thread = threading.Thread(target=sampler.run_until_stopped, args=(stop,))
    thread.start()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert len(recorder.samples) == 3


def test_callback_errors_do_not_stop_the_loop() -> None:
    stop = threading.Event()
    calls = []

    def flaky(sample) -> None:
        calls.append(sample)
        if len(calls) == 1:
            raise RuntimeError("downstream failed")
        stop.set()

    sampler = make_sampler(scripted_probe("code"), Recorder())
    sampler._on_sample = flaky
    thread = threading.Thread(target=sampler.run_until_stopped, args=(stop,))
    thread.start()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert len(calls) == 2


@pytest.mark.parametrize("failures", [1, 50])
def test_repeated_failures_warn_periodically(caplog, failures) -> None:
    recorder = Recorder()
    sampler = make_sampler(failing_probe(), recorder)
    try:
        with caplog.at_level("WARNING", logger="focusdebt.sampler"):
            for _ in range(failures):
                sampler.tick()
    finally:
        sampler.close()

    warnings = [r for r in caplog.records if r.levelname == "WARNING"]
    assert len(warnings) == (1 if failures == 1 else 2)
