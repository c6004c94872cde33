from edgescan.scanner.results import ResultStore, ValidResult


def test_insert_keeps_ascending_latency_order():
    store = ResultStore()
    for address, latency in [("a", 300), ("b", 80), ("c", 150), ("d", 90)]:
        store.insert(ValidResult(address, latency))
        latencies = [r.latency_ms for r in store.items()]
        assert latencies == sorted(latencies)

    assert [r.address for r in store] == ["b", "d", "c", "a"]


def test_equal_latencies_keep_insertion_order():
    store = ResultStore()
    store.insert(ValidResult("first", 100))
    store.insert(ValidResult("second", 100))
    store.insert(ValidResult("fast", 60))

    assert [r.address for r in store] == ["fast", "first", "second"]


def test_store_never_evicts():
    store = ResultStore()
    for i in range(20):
        store.insert(ValidResult(f"10.0.0.{i}", 100 + i))

    assert len(store) == 20


def test_items_is_a_snapshot_and_clear_empties():
    store = ResultStore()
    store.insert(ValidResult("a", 100))
    snapshot = store.items()

    store.clear()

    assert snapshot == (ValidResult("a", 100),)
    assert len(store) == 0
    assert store.items() == ()
