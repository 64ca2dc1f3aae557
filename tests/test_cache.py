import json

from tradeoffers.cache import DescriptionCache, asset_filename
from tradeoffers.models import ClassKey

A = ClassKey(730, "1")
B = ClassKey(730, "2")
C = ClassKey(730, "3", "7")


def test_asset_filename() -> None:
    assert asset_filename(C) == "asset_730_3_7.json"


def test_sweep_evicts_least_recently_used() -> None:
    cache = DescriptionCache(max_items=2, gc_interval=0)
    cache.put(A, {"name": "a"})
    cache.put(B, {"name": "b"})
    cache.put(C, {"name": "c"})

    # Между чистками кэш может превышать лимит
    assert len(cache) == 3

    assert cache.get(A) == {"name": "a"}
    assert cache.sweep() == 1

    assert cache.exists(A)
    assert not cache.exists(B)
    assert cache.exists(C)


def test_put_is_write_once() -> None:
    cache = DescriptionCache(gc_interval=0)
    assert cache.put(A, {"name": "first"}) is True
    assert cache.put(A, {"name": "second"}) is False
    assert cache.get(A) == {"name": "first"}


def test_put_writes_through_to_storage(storage) -> None:
    cache = DescriptionCache(gc_interval=0, storage=storage)
    cache.put(A, {"name": "a"})
    cache.put(B, {"name": "b"}, persist=False)

    assert json.loads(storage.files["asset_730_1_0.json"]) == {"name": "a"}
    assert "asset_730_2_0.json" not in storage.files


def test_get_falls_back_to_storage(storage) -> None:
    storage.files[asset_filename(A)] = json.dumps({"name": "stored"}).encode()
    cache = DescriptionCache(gc_interval=0, storage=storage)

    assert not cache.exists(A)
    assert cache.get(A) == {"name": "stored"}
    assert cache.exists(A)
    assert cache.get(B) is None


def test_hydrate_skips_broken_files(storage) -> None:
    storage.files[asset_filename(A)] = b'{"name": "a"}'
    storage.files[asset_filename(B)] = b"not json"
    cache = DescriptionCache(gc_interval=0, storage=storage)

    assert cache.hydrate([A, B, C]) == 1
    assert cache.keys() == [A]
    # Загруженное из хранилища обратно не пишется
    assert storage.writes == []
