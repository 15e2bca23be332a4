import threading
import time

import pytest

from impactlens.core.concurrency import call_with_timeout, fan_out
from impactlens.core.errors import UpstreamError


def test_fan_out_preserves_input_order():
    def slow_square(n):
        time.sleep(0.01 * (5 - n))
        return n * n

    outcomes = fan_out(slow_square, range(5), max_workers=5, timeout=None)
    assert [o.item for o in outcomes] == [0, 1, 2, 3, 4]
    assert [o.result for o in outcomes] == [0, 1, 4, 9, 16]
    assert all(o.ok for o in outcomes)


def test_fan_out_captures_errors_per_item():
    def maybe_fail(n):
        if n == 2:
            raise ValueError("bad item")
        return n

    outcomes = fan_out(maybe_fail, [1, 2, 3], max_workers=2, timeout=5)
    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, ValueError)


def test_fan_out_times_out_slow_calls():
    release = threading.Event()

    def hang(n):
        if n == 1:
            release.wait(timeout=2)
        return n

    try:
        outcomes = fan_out(hang, [0, 1, 2], max_workers=3, timeout=0.2)
    finally:
        release.set()
    assert [o.ok for o in outcomes] == [True, False, True]
    assert isinstance(outcomes[1].error, TimeoutError)


def test_fan_out_empty():
    assert fan_out(lambda n: n, [], max_workers=4, timeout=1) == []


def test_call_with_timeout():
    assert call_with_timeout(lambda a, b: a + b, 1, 2, timeout=1) == 3
    release = threading.Event()
    try:
        with pytest.raises(UpstreamError):
            call_with_timeout(release.wait, 2, timeout=0.1, label="advisor")
    finally:
        release.set()


def test_fan_out_fails_queued_items_when_every_worker_hangs():
    release = threading.Event()

    def hang(n):
        release.wait(timeout=3)
        return n

    begun = time.monotonic()
    try:
        outcomes = fan_out(hang, [0, 1], max_workers=1, timeout=0.2)
    finally:
        release.set()
    assert time.monotonic() - begun < 1.0
    assert [o.ok for o in outcomes] == [False, False]
    assert all(isinstance(o.error, TimeoutError) for o in outcomes)


def test_fan_out_keeps_scheduling_while_a_worker_is_free():
    release = threading.Event()

    def hang_first(n):
        if n == 0:
            release.wait(timeout=3)
        return n

    try:
        outcomes = fan_out(hang_first, [0, 1, 2, 3], max_workers=2, timeout=0.2)
    finally:
        release.set()
    assert [o.ok for o in outcomes] == [False, True, True, True]
