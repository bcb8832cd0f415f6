import pytest
from switchboard.core.dedup import DedupWindow

def test_first_sighting_is_not_duplicate():
    w = DedupWindow(capacity=3)
    assert w.seen("a") is False
    assert w.seen("a") is True
    assert "a" in w

def test_oldest_id_evicted_past_capacity():
    w = DedupWindow(capacity=3)
    for i in ["a", "b", "c", "d"]:
        assert w.seen(i) is False
    assert len(w) == 3
    assert "a" not in w
    # evicted ids read as new again
    assert w.seen("a") is False
    assert w.seen("d") is True

def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        DedupWindow(capacity=0)
