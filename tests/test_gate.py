import pytest

from streams_common.gate import ConcurrencyGate


def test_acquire_then_reject_until_release():
    g = ConcurrencyGate()
    assert g.try_acquire("job-1")
    assert g.busy
    assert g.holder == "job-1"

    assert not g.try_acquire("job-2")
    assert g.holder == "job-1"

    g.release()
    assert not g.busy
    assert g.holder is None


def test_release_on_idle_gate_is_a_bug():
    g = ConcurrencyGate()
    with pytest.raises(RuntimeError):
        g.release()


def test_sequential_round_trips_do_not_leak():
    g = ConcurrencyGate()
    for i in range(20):
        assert g.try_acquire(i)
        g.release()
    assert g.acquisitions == 20
    assert not g.busy
