import threading

import pytest

from sitemirror.cache import CacheEntry, ResponseCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def entry(url, body=b'body'):
    return CacheEntry(canonical_url=url, body=body, headers=[('Content-Type', 'text/plain')])


@pytest.fixture
def clock():
    return FakeClock()


def test_put_then_get(clock):
    cache = ResponseCache(ttl=60, capacity=10, clock=clock)
    cache.put('https://example.com/a', entry('https://example.com/a', b'A'))

    hit = cache.get('https://example.com/a')
    assert hit is not None
    assert hit.body == b'A'
    assert hit.status_code == 200


def test_expired_entry_is_dropped(clock):
    cache = ResponseCache(ttl=60, capacity=10, clock=clock)
    cache.put('u', entry('u'))

    clock.now += 60
    assert cache.get('u') is not None

    clock.now += 1
    assert cache.get('u') is None
    assert 'u' not in cache
    assert cache.get('u') is None


def test_capacity_evicts_oldest_insertion(clock):
    cache = ResponseCache(ttl=60, capacity=2, clock=clock)
    cache.put('a', entry('a'))
    cache.put('b', entry('b'))

    # reading does not refresh position
    assert cache.get('a') is not None
    cache.put('c', entry('c'))

    assert 'a' not in cache
    assert 'b' in cache and 'c' in cache
    assert len(cache) == 2


def test_reinserting_key_does_not_evict_others(clock):
    cache = ResponseCache(ttl=60, capacity=2, clock=clock)
    cache.put('a', entry('a'))
    cache.put('b', entry('b'))
    cache.put('b', entry('b', b'newer'))

    assert len(cache) == 2
    assert cache.get('b').body == b'newer'


def test_clear(clock):
    cache = ResponseCache(clock=clock)
    cache.put('a', entry('a'))
    cache.clear()
    assert len(cache) == 0


def test_disabled_cache_is_a_no_op(clock):
    cache = ResponseCache(enabled=False, clock=clock)
    cache.put('a', entry('a'))
    assert cache.get('a') is None
    assert len(cache) == 0


def test_concurrent_puts_respect_capacity():
    cache = ResponseCache(ttl=60, capacity=50)

    def writer(offset):
        for i in range(200):
            key = f"{offset}-{i}"
            cache.put(key, entry(key))

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(cache) == 50
