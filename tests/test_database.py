import json
import threading

import pytest

from database import DocumentStore, StoreError, SEED_PRODUCTS
from schemas import Cart, CartItem, Document


def test_init_creates_document_and_seeds_catalog(tmp_path):
    store = DocumentStore(str(tmp_path / "db.json"))
    assert not store.exists()
    document = store.init()
    assert [p.id for p in document.products] == ["p1", "p2", "p3", "p4", "p5"]
    with open(store.path) as fh:
        raw = json.load(fh)
    assert set(raw) == {"users", "products", "carts", "orders"}
    assert raw["products"][0] == SEED_PRODUCTS[0]


def test_init_does_not_reseed_existing_catalog(tmp_path):
    store = DocumentStore(str(tmp_path / "db.json"))
    store.init()
    document = store.load()
    document.products = document.products[:1]
    store.save(document)
    assert [p.id for p in store.init().products] == ["p1"]


def test_load_corrupt_document_fails_loudly(tmp_path):
    path = tmp_path / "db.json"
    path.write_text("{not json")
    store = DocumentStore(str(path))
    with pytest.raises(StoreError):
        store.load()
    with pytest.raises(StoreError):
        store.init()
    assert path.read_text() == "{not json"


@pytest.mark.parametrize("raw", [b'{"users": [\xff]}', b"\xff\xfe"])
def test_load_invalid_utf8_fails_loudly(tmp_path, raw):
    path = tmp_path / "db.json"
    path.write_bytes(raw)
    with pytest.raises(StoreError):
        DocumentStore(str(path)).load()


@pytest.mark.parametrize("raw", ["{}", '{"products": []}', '{"users": [], "products": [], "carts": []}'])
def test_load_document_missing_collections_fails(tmp_path, raw):
    path = tmp_path / "db.json"
    path.write_text(raw)
    store = DocumentStore(str(path))
    with pytest.raises(StoreError):
        store.load()
    with pytest.raises(StoreError):
        store.init()
    assert path.read_text() == raw


def test_load_missing_document_fails(tmp_path):
    with pytest.raises(StoreError):
        DocumentStore(str(tmp_path / "missing.json")).load()


def test_save_uses_camel_case_keys(tmp_path):
    store = DocumentStore(str(tmp_path / "db.json"))
    item = CartItem(product_id="p1", title="Smartphone X", price=29999, image="img", qty=2)
    store.save(Document(users=[], products=[], carts=[Cart(user_id="u1", items=[item])], orders=[]))
    raw = json.loads((tmp_path / "db.json").read_text())
    assert raw["carts"][0]["userId"] == "u1"
    assert raw["carts"][0]["items"][0]["productId"] == "p1"
    assert store.load().carts[0].items[0].qty == 2


def test_save_leaves_no_temp_files(tmp_path):
    store = DocumentStore(str(tmp_path / "db.json"))
    store.init()
    store.save(store.load())
    assert [p.name for p in tmp_path.iterdir()] == ["db.json"]


def test_transaction_discards_changes_on_error(tmp_path):
    store = DocumentStore(str(tmp_path / "db.json"))
    store.init()
    with pytest.raises(ValueError):
        with store.transaction() as document:
            document.carts.append(Cart(user_id="u1"))
            raise ValueError("boom")
    assert store.load().carts == []


def _add_line(document, product_id):
    cart = document.carts[0]
    cart.items.append(CartItem(product_id=product_id, title=product_id, price=1, image="img", qty=1))


def test_interleaved_load_save_loses_an_update(tmp_path):
    store = DocumentStore(str(tmp_path / "db.json"))
    store.init()
    with store.transaction() as document:
        document.carts.append(Cart(user_id="u1"))

    # Both requests load before either saves.
    first = store.load()
    second = store.load()
    _add_line(first, "p1")
    _add_line(second, "p2")
    store.save(first)
    store.save(second)

    assert [i.product_id for i in store.load().carts[0].items] == ["p2"]


def test_concurrent_transactions_keep_every_update(tmp_path):
    store = DocumentStore(str(tmp_path / "db.json"))
    store.init()
    with store.transaction() as document:
        document.carts.append(Cart(user_id="u1"))

    start = threading.Barrier(8)

    def worker(n):
        start.wait()
        with store.transaction() as document:
            _add_line(document, f"x{n}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    items = store.load().carts[0].items
    assert sorted(i.product_id for i in items) == sorted(f"x{n}" for n in range(8))
