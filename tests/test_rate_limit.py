from willvault.service.rate_limit import ClaimThrottle, SlidingWindow


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_window_expires_old_hits():
    clock = FakeClock()
    window = SlidingWindow(limit=2, window_seconds=10)
    window.hit("a", clock.now)
    window.hit("a", clock.now + 1)
    assert window.wait_for("a", clock.now + 2) == 8
    assert window.wait_for("a", clock.now + 10) == 0


def test_throttle_limits_per_client():
    clock = FakeClock()
    throttle = ClaimThrottle(per_client=2, per_claimant=10, window_seconds=60, clock=clock)
    assert throttle.admit("10.0.0.1", "bob@example.com").allowed
    assert throttle.admit("10.0.0.1", "carol@example.com").allowed

    verdict = throttle.admit("10.0.0.1", "dan@example.com")
    assert not verdict.allowed
    assert verdict.scope == "client"
    assert verdict.retry_after_header == "60"

    assert throttle.admit("10.0.0.2", "dan@example.com").allowed


def test_throttle_limits_per_claimant_across_clients():
    clock = FakeClock()
    throttle = ClaimThrottle(per_client=10, per_claimant=1, window_seconds=60, clock=clock)
    assert throttle.admit("10.0.0.1", "bob@example.com").allowed

    verdict = throttle.admit("10.0.0.2", "bob@example.com")
    assert not verdict.allowed
    assert verdict.scope == "claimant"


def test_refused_claims_consume_nothing():
    clock = FakeClock()
    throttle = ClaimThrottle(per_client=1, per_claimant=1, window_seconds=60, clock=clock)
    assert throttle.admit("10.0.0.1", "bob@example.com").allowed
    # refused on claimant scope; client 10.0.0.2 keeps its budget
    assert not throttle.admit("10.0.0.2", "bob@example.com").allowed
    assert throttle.admit("10.0.0.2", "carol@example.com").allowed


def test_window_reopens_and_reset():
    clock = FakeClock()
    throttle = ClaimThrottle(per_client=1, window_seconds=30, clock=clock)
    assert throttle.admit("c", "bob@example.com").allowed
    assert not throttle.admit("c", "bob@example.com").allowed
    clock.now += 30
    assert throttle.admit("c", "bob@example.com").allowed
    throttle.reset()
    assert throttle.admit("c", "bob@example.com").allowed


def test_idle_keys_are_dropped():
    clock = FakeClock()
    window = SlidingWindow(limit=1, window_seconds=10)
    for n in range(100):
        window.hit(f"client-{n}", clock.now)
    assert len(window) == 100
    assert window.wait_for("client-0", clock.now + 10) == 0
    assert len(window) == 99
    assert window.cleanup_expired(clock.now + 10) == 99
    assert len(window) == 0


def test_throttle_memory_follows_active_keys():
    clock = FakeClock()
    throttle = ClaimThrottle(per_client=5, window_seconds=60, clock=clock)
    for n in range(10000):
        assert throttle.admit(f"10.0.{n // 256}.{n % 256}", f"user{n}@example.com").allowed
    assert throttle.tracked_keys() == {"client": 10000, "claimant": 10000}

    clock.now += 3600
    assert throttle.admit("10.9.9.9", "late@example.com").allowed
    assert throttle.tracked_keys() == {"client": 1, "claimant": 1}
