"""
Catalog: the static list of purchasable items and their fulfillment commands.

File format (products.json):

    {
      "currency": "PLN",
      "products": [
        {"id": "key", "name": "Key", "price": 5.00,
         "minQty": 1, "maxQty": 10,
         "commands": ["give {player} key {amount}"]}
      ]
    }

A load either yields a fully validated Catalog or raises CatalogError;
CatalogStore.reload() only swaps the active catalog on success.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .errors import CatalogError

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "PLN"
DEFAULT_MIN_QTY = 1
DEFAULT_MAX_QTY = 64

PLAYER_PLACEHOLDER = "{player}"
AMOUNT_PLACEHOLDER = "{amount}"


@dataclass(frozen=True, slots=True)
class CatalogItem:
    id: str
    name: str
    price: Decimal
    min_qty: int
    max_qty: int
    commands: Tuple[str, ...]

    def render_commands(self, identity: str, qty: int) -> List[str]:
        return [
            cmd.replace(PLAYER_PLACEHOLDER, identity)
               .replace(AMOUNT_PLACEHOLDER, str(qty))
            for cmd in self.commands
        ]

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": str(self.price),
            "minQty": self.min_qty,
            "maxQty": self.max_qty,
            "commands": list(self.commands),
        }


@dataclass(frozen=True, slots=True)
class Catalog:
    currency: str
    items: Tuple[CatalogItem, ...]

    def get(self, item_id: str) -> Optional[CatalogItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def __len__(self) -> int:
        return len(self.items)

    def to_json(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "products": [item.to_json() for item in self.items],
        }


def _qty_bound(prod: dict, key: str, default: int) -> int:
    v = prod.get(key)
    if v is None:
        return default
    if isinstance(v, bool) or not isinstance(v, int):
        raise CatalogError(f"{prod['id']}: {key} must be an integer")
    return v


def _parse_item(prod: Any) -> CatalogItem:
    if not isinstance(prod, dict):
        raise CatalogError("every product must be an object")
    if not prod.get("id") or not prod.get("name"):
        raise CatalogError("every product needs an id and a name")

    pid = str(prod["id"])
    price = prod.get("price")
    # floats arrive as Decimal (parse_float), ints as int
    if isinstance(price, bool) or not isinstance(price, (int, Decimal)):
        raise CatalogError(f"{pid}: bad price")
    price = Decimal(price)
    if not price.is_finite() or price <= 0:
        raise CatalogError(f"{pid}: bad price")

    min_qty = _qty_bound(prod, "minQty", DEFAULT_MIN_QTY)
    max_qty = _qty_bound(prod, "maxQty", DEFAULT_MAX_QTY)
    if min_qty < 1:
        raise CatalogError(f"{pid}: minQty must be >= 1")
    if max_qty < min_qty:
        raise CatalogError(f"{pid}: maxQty must be >= minQty")

    commands = prod.get("commands")
    if not isinstance(commands, list) or not commands:
        raise CatalogError(f"{pid}: commands[] must be a non-empty list")
    if not all(isinstance(c, str) and c.strip() for c in commands):
        raise CatalogError(f"{pid}: every command must be a non-empty string")

    return CatalogItem(
        id=pid,
        name=str(prod["name"]),
        price=price,
        min_qty=min_qty,
        max_qty=max_qty,
        commands=tuple(commands),
    )


def parse_catalog(raw: str) -> Catalog:
    try:
        doc = json.loads(raw, parse_float=Decimal)
    except json.JSONDecodeError as e:
        raise CatalogError(f"invalid JSON: {e}")
    if not isinstance(doc, dict):
        raise CatalogError("invalid JSON: expected an object")
    products = doc.get("products")
    if not isinstance(products, list):
        raise CatalogError("missing products[]")

    items: List[CatalogItem] = []
    seen = set()
    for prod in products:
        item = _parse_item(prod)
        if item.id in seen:
            raise CatalogError(f"duplicate id: {item.id}")
        seen.add(item.id)
        items.append(item)

    return Catalog(
        currency=str(doc.get("currency") or DEFAULT_CURRENCY),
        items=tuple(items),
    )


def load_catalog(path: str) -> Catalog:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise CatalogError(f"cannot read {path}: {e}")
    return parse_catalog(raw)


class CatalogStore:
    """Holds the active catalog; reload is all-or-nothing."""

    def __init__(self, path: str, catalog: Optional[Catalog] = None) -> None:
        self.path = path
        self.catalog = catalog if catalog is not None else load_catalog(path)

    def reload(self) -> Catalog:
        catalog = load_catalog(self.path)
        self.catalog = catalog
        logger.info("catalog reloaded from %s (%d items)",
                    self.path, len(catalog))
        return catalog

    def get(self, item_id: str) -> Optional[CatalogItem]:
        return self.catalog.get(item_id)
