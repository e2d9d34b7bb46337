from docflow.utils.ttl_cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(60, clock=clock)
    cache.put('k', 'v')
    assert cache.get('k') == 'v'
    clock.now += 59
    assert cache.get('k') == 'v'
    clock.now += 1
    assert cache.get('k') is None


def test_get_or_compute_only_computes_on_miss():
    calls = []
    cache = TTLCache(60, clock=FakeClock())

    def compute():
        calls.append(1)
        return frozenset({'x'})

    assert cache.get_or_compute('k', compute) == frozenset({'x'})
    assert cache.get_or_compute('k', compute) == frozenset({'x'})
    assert len(calls) == 1


def test_empty_value_is_still_a_hit():
    calls = []
    cache = TTLCache(60, clock=FakeClock())
    cache.get_or_compute('k', lambda: calls.append(1) or frozenset())
    cache.get_or_compute('k', lambda: calls.append(1) or frozenset())
    assert calls == [1]


def test_invalidate_role_drops_every_role_set_containing_it():
    cache = TTLCache(60, clock=FakeClock())
    cache.put(frozenset({'employee'}), 1)
    cache.put(frozenset({'employee', 'accountant'}), 2)
    cache.put(frozenset({'accountant'}), 3)
    assert cache.invalidate_role('employee') == 2
    assert cache.keys() == frozenset({frozenset({'accountant'})})


def test_put_prunes_expired_entries_and_clear_empties():
    clock = FakeClock()
    cache = TTLCache(10, clock=clock)
    cache.put('old', 1)
    clock.now += 11
    cache.put('new', 2)
    assert cache.keys() == frozenset({'new'})
    cache.clear()
    assert len(cache) == 0


def test_readers_keep_their_snapshot_while_writer_swaps():
    cache = TTLCache(60, clock=FakeClock())
    cache.put('a', 1)
    snapshot = cache._entries
    cache.put('b', 2)
    assert 'b' not in snapshot
    assert cache._entries is not snapshot
