from payout_recon.job_store import JobStore


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_put_get_delete():
    store = JobStore()
    store.put("a", {"x": 1})
    assert store.get("a") == {"x": 1}
    assert "a" in store

    store.delete("a")
    assert store.get("a") is None
    assert store.get("a", "dflt") == "dflt"
    store.delete("missing")


def test_expire_evicts_lazily_after_deadline():
    clock = FakeClock()
    store = JobStore(clock=clock)
    store.put("job", "done")
    store.expire("job", 10)

    clock.now += 9.9
    assert store.get("job") == "done"

    clock.now += 0.2
    assert store.get("job") is None
    assert store.keys() == []


def test_put_with_ttl_and_overwrite_clears_deadline():
    clock = FakeClock()
    store = JobStore(clock=clock)
    store.put("k", 1, ttl=5)
    store.put("k", 2)

    clock.now += 100
    assert store.get("k") == 2


def test_expire_unknown_key_is_noop():
    store = JobStore()
    store.expire("nope", 1)
    assert "nope" not in store


def test_keys_skips_expired():
    clock = FakeClock()
    store = JobStore(clock=clock)
    store.put("a", 1, ttl=1)
    store.put("b", 2)
    clock.now += 2
    assert store.keys() == ["b"]
