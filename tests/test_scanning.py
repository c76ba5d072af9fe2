from horizons.scanning import ScanDebouncer


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_repeat_within_window_is_dropped() -> None:
    clock = FakeClock()
    debouncer = ScanDebouncer(window_seconds=1.0, clock=clock)
    assert debouncer.accept("counter", "abc") is True
    clock.now += 0.5
    assert debouncer.accept("counter", "abc") is False
    clock.now += 0.6
    assert debouncer.accept("counter", "abc") is True


def test_rejected_repeat_does_not_extend_window() -> None:
    clock = FakeClock()
    debouncer = ScanDebouncer(window_seconds=1.0, clock=clock)
    debouncer.accept("counter", "abc")
    clock.now += 0.9
    assert debouncer.accept("counter", "abc") is False
    clock.now += 0.2
    assert debouncer.accept("counter", "abc") is True


def test_codes_and_stations_are_independent() -> None:
    clock = FakeClock()
    debouncer = ScanDebouncer(window_seconds=1.0, clock=clock)
    assert debouncer.accept("counter", "abc") is True
    assert debouncer.accept("counter", "def") is True
    assert debouncer.accept("vault", "abc") is True


def test_reset_forgets_previous_scans() -> None:
    debouncer = ScanDebouncer(window_seconds=60, clock=FakeClock())
    debouncer.accept("counter", "abc")
    debouncer.reset()
    assert debouncer.accept("counter", "abc") is True
