from signaldesk.services.volume_up import VolumeUpService
from signaldesk.tests.fakes import FakeClock


def _service():
    clock = FakeClock(1_000.0)
    return VolumeUpService(clock=clock), clock


def test_reading_refreshes_waiting_close_state():
    vu, _ = _service()
    vu.init_close_state("ETHUSDT", "B", 10)
    assert vu.can_close_position("ETHUSDT", "B") is False

    vu.save_volume_up("ETHUSDT", "1h", 25)

    state = vu.get_close_state("ETHUSDT", "B")
    assert state.current_volume == 25
    assert state.initial_volume == 10
    assert vu.can_close_position("ETHUSDT", "B") is True


def test_other_symbols_do_not_touch_close_state():
    vu, _ = _service()
    vu.init_close_state("ETHUSDT", "B", 10)
    vu.save_volume_up("LINKUSDT", "1h", 50)
    assert vu.can_close_position("ETHUSDT", "B") is False


def test_stale_readings_are_evicted_on_read():
    vu, clock = _service()
    vu.save_volume_up("ETHUSDT", "1h", 25)

    clock.advance(120)
    assert vu.get_volume_up("ETHUSDT", "1h").volume == 25

    clock.advance(1)
    assert vu.get_volume_up("ETHUSDT", "1h") is None
    assert vu.get_stats()["totalRecords"] == 0


def test_stale_close_state_expires():
    vu, clock = _service()
    vu.init_close_state("ETHUSDT", "B", 30)
    clock.advance(121)
    assert vu.get_close_state("ETHUSDT", "B") is None
    assert vu.can_close_position("ETHUSDT", "B") is False


def test_queries_and_clearing():
    vu, clock = _service()
    vu.save_volume_up("ETHUSDT", "1h", 5)
    clock.advance(1)
    vu.save_volume_up("ETHUSDT", "15m", 7)
    vu.save_volume_up("LINKUSDT", "1h", 9)

    assert len(vu.get_volume_up_by_symbol("ETHUSDT")) == 2
    assert len(vu.get_volume_up_by_timeframe("1h")) == 2
    assert vu.latest_for_symbol("ETHUSDT").timeframe == "15m"

    assert vu.clear_by_timeframe("1h") == 2
    assert [r.symbol for r in vu.get_all_active_volume_up()] == ["ETHUSDT"]
    assert vu.clear_by_symbol("ETHUSDT") == 1

    vu.init_close_state("ETHUSDT", "B", 1)
    vu.clear_all()
    assert vu.get_all_close_states() == []


def test_mark_position_closed_drops_state():
    vu, _ = _service()
    vu.init_close_state("ETHUSDT", "B", 30)
    vu.mark_position_closed("ETHUSDT", "B")
    assert vu.get_close_state("ETHUSDT", "B") is None


def test_cleanup_expired_counts_removed_entries():
    vu, clock = _service()
    vu.save_volume_up("ETHUSDT", "1h", 5)
    vu.init_close_state("ETHUSDT", "B", 1)
    clock.advance(200)
    assert vu.cleanup_expired() == 2
