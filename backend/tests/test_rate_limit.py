from aklatan.utils import rate_limit
from aklatan.utils.rate_limit import InMemoryRateLimiter


def test_hits_expire_one_at_a_time(monkeypatch):
    clock = {'now': 100.0}
    monkeypatch.setattr(rate_limit.time, 'monotonic', lambda: clock['now'])
    limiter = InMemoryRateLimiter()

    assert limiter.allow('k', 2, 60) == (True, 0)
    clock['now'] = 130.0
    assert limiter.allow('k', 2, 60) == (True, 0)
    assert limiter.allow('k', 2, 60) == (False, 30)

    # the first hit leaves the window, the second one still counts
    clock['now'] = 161.0
    assert limiter.allow('k', 2, 60) == (True, 0)
    assert limiter.allow('k', 2, 60)[0] is False
    assert limiter.allow('other', 2, 60) == (True, 0)


def test_reset_single_key_and_all():
    limiter = InMemoryRateLimiter()
    for key in ('a', 'b'):
        limiter.allow(key, 1, 60)
    limiter.reset('a')
    assert limiter.allow('a', 1, 60)[0] is True
    assert limiter.allow('b', 1, 60)[0] is False
    limiter.reset()
    assert limiter.allow('b', 1, 60)[0] is True
