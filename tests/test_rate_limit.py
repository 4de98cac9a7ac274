from proximeet.core.rate_limit import KeyedRateLimiter, TokenBucketRateLimiter


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_token_bucket_refills_over_time():
    clock = _Clock()
    limiter = TokenBucketRateLimiter(60, burst=2, clock=clock)

    assert limiter.try_acquire()
    assert limiter.try_acquire()
    assert not limiter.try_acquire()

    clock.now = 1.0
    assert limiter.try_acquire()
    assert not limiter.try_acquire()


def test_keyed_limiter_isolates_keys():
    clock = _Clock()
    limiter = KeyedRateLimiter(60, burst=1, clock=clock)

    assert limiter.allow("a")
    assert not limiter.allow("a")
    assert limiter.allow("b")

    limiter.forget("a")
    assert limiter.allow("a")
