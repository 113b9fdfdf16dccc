import json
from decimal import Decimal

import pytest

from shopbot.catalog import CatalogStore, load_catalog, parse_catalog
from shopbot.errors import CatalogError


def _doc(**prod):
    base = {"id": "key", "name": "Key", "price": 5,
            "commands": ["give {player} key {amount}"]}
    base.update(prod)
    return json.dumps({"products": [base]})


def test_parse_catalog(catalog):
    assert catalog.currency == "PLN"
    assert len(catalog) == 3
    key = catalog.get("key")
    assert key.price == Decimal("5.00")
    assert (key.min_qty, key.max_qty) == (1, 10)
    assert catalog.get("missing") is None


def test_prices_are_exact_decimals(catalog):
    assert catalog.get("vip").price == Decimal("19.99")
    assert catalog.get("gems").price == Decimal("0.35")


def test_defaults():
    cat = parse_catalog(_doc())
    item = cat.get("key")
    assert cat.currency == "PLN"
    assert (item.min_qty, item.max_qty) == (1, 64)


def test_render_commands(catalog):
    item = catalog.get("vip")
    assert item.render_commands("Steve", 1) == [
        "lp user Steve parent add vip", "say Steve is VIP",
    ]
    assert catalog.get("gems").render_commands("Alex", 12) == [
        "eco give Alex 12",
    ]


@pytest.mark.parametrize("raw", [
    "not json",
    "[]",
    "{}",
    '{"products": {}}',
    _doc(id=""),
    _doc(name=None),
    _doc(price=0),
    _doc(price=-1.5),
    _doc(price="5"),
    _doc(price=True),
    _doc(minQty=0),
    _doc(minQty=5, maxQty=2),
    _doc(maxQty="10"),
    _doc(minQty=1.5),
    _doc(commands=[]),
    _doc(commands="give {player} key"),
    _doc(commands=["ok", "  "]),
])
def test_invalid_catalog_rejected(raw):
    with pytest.raises(CatalogError):
        parse_catalog(raw)


def test_duplicate_ids_rejected():
    prod = {"id": "key", "name": "Key", "price": 1, "commands": ["x"]}
    with pytest.raises(CatalogError, match="duplicate"):
        parse_catalog(json.dumps({"products": [prod, prod]}))


def test_missing_file():
    with pytest.raises(CatalogError):
        load_catalog("/nonexistent/products.json")


def test_to_json_keeps_file_field_names(catalog):
    j = catalog.to_json()
    assert j["currency"] == "PLN"
    assert j["products"][0] == {
        "id": "key", "name": "Key", "price": "5.00", "minQty": 1,
        "maxQty": 10, "commands": ["give {player} key {amount}"],
    }


def test_reload_is_all_or_nothing(tmp_path):
    path = tmp_path / "products.json"
    path.write_text(_doc(price=5), encoding="utf-8")
    store = CatalogStore(str(path))
    assert store.get("key").price == Decimal(5)

    path.write_text(_doc(price=7), encoding="utf-8")
    store.reload()
    assert store.get("key").price == Decimal(7)

    path.write_text(_doc(price=-1), encoding="utf-8")
    with pytest.raises(CatalogError):
        store.reload()
    assert store.get("key").price == Decimal(7)
