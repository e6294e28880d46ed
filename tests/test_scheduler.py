from serialbridge.runtime.scheduler import FakeClock, RealClock, elapsed_ms


def test_fake_clock_sleep_advances_and_records() -> None:
    clock = FakeClock(start_ms=10)
    clock.sleep_ms(500)
    clock.sleep_ms(-3)
    assert clock.now_ms() == 510
    assert clock.sleeps == [500, -3]


def test_elapsed_ms_never_negative() -> None:
    clock = FakeClock(start_ms=100)
    assert elapsed_ms(clock, 40) == 60
    assert elapsed_ms(clock, 400) == 0


def test_real_clock_smoke() -> None:
    clock = RealClock()
    t0 = clock.now_ms()
    clock.sleep_ms(0)
    assert clock.now_ms() >= t0
