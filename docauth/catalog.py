"""Static retail catalog: packages, add-ons, hardware and feature tables.

The catalog is packaged as ``data/catalog.yaml`` and loaded once. Two
verticals are offered: ``elder-tech`` (default) and ``home-security``.
Only elder-tech carries hardware and feature tables.

Hardware rollups mirror how the tiers are sold: Basic is the A1 table,
Plus is Basic with the positive deltas of the A2 table applied, Pro is the
Plus rollup with the positive deltas of the A3 table applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Iterable, List, Optional, Tuple

from docauth.core import PACKAGE_ROOT, load_yaml

CATALOG_PATH = PACKAGE_ROOT / "data" / "catalog.yaml"

VERTICALS: Tuple[str, ...] = ("elder-tech", "home-security")
PACKAGE_TIERS: Tuple[str, ...] = ("A1", "A2", "A3")


class CatalogError(ValueError):
    """Unknown vertical, package or add-on."""


@dataclass(frozen=True)
class Package:
    id: str
    name: str
    base_price: int
    summary: str = ""


@dataclass(frozen=True)
class AddOn:
    id: str
    label: str
    tier: str
    price: int
    description: str = ""
    price_label: Optional[str] = None


@dataclass(frozen=True)
class HardwareItem:
    name: str
    quantity: int
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"name": self.name, "quantity": self.quantity}
        if self.note:
            d["note"] = self.note
        return d


@dataclass(frozen=True)
class HardwareCategory:
    title: str
    items: Tuple[HardwareItem, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "items": [i.to_dict() for i in self.items]}


@dataclass(frozen=True)
class FeatureCategory:
    title: str
    items: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"title": self.title, "items": list(self.items)}


@dataclass(frozen=True)
class Vertical:
    id: str
    packages: Tuple[Package, ...]
    add_ons: Tuple[AddOn, ...]


@dataclass(frozen=True)
class QuotePricing:
    """Priced selection. All amounts are whole currency units."""
    package_price: int
    add_on_total: int
    total: int

    def __post_init__(self):
        for name in ("package_price", "add_on_total", "total"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, int) or v < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {v!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "package_price": self.package_price,
            "add_on_total": self.add_on_total,
            "total": self.total,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "QuotePricing":
        return cls(
            package_price=d["package_price"],
            add_on_total=d["add_on_total"],
            total=d["total"],
        )


# -----------------------------------------------------------------------------
# Loading
# -----------------------------------------------------------------------------


@lru_cache(maxsize=1)
def _catalog() -> Dict[str, Any]:
    data = load_yaml(CATALOG_PATH)
    if not isinstance(data, dict) or "verticals" not in data:
        raise CatalogError(f"Malformed catalog: {CATALOG_PATH}")
    return data


@lru_cache(maxsize=None)
def get_vertical(vertical: str) -> Vertical:
    raw = _catalog()["verticals"].get(vertical)
    if raw is None:
        raise CatalogError(f"Unknown vertical: {vertical!r}")
    packages = tuple(
        Package(id=p["id"], name=p["name"], base_price=int(p["base_price"]), summary=p.get("summary", ""))
        for p in raw.get("packages") or []
    )
    add_ons = tuple(
        AddOn(
            id=a["id"],
            label=a["label"],
            tier=a["tier"],
            price=int(a["price"]),
            description=a.get("description", ""),
            price_label=a.get("price_label"),
        )
        for a in raw.get("add_ons") or []
    )
    return Vertical(id=vertical, packages=packages, add_ons=add_ons)


def get_package(vertical: str, package_id: str) -> Package:
    for pkg in get_vertical(vertical).packages:
        if pkg.id == package_id:
            return pkg
    raise CatalogError(f"Unknown package {package_id!r} for vertical {vertical!r}")


def get_add_ons(vertical: str) -> Tuple[AddOn, ...]:
    return get_vertical(vertical).add_ons


def get_add_on(vertical: str, add_on_id: str) -> AddOn:
    for add_on in get_vertical(vertical).add_ons:
        if add_on.id == add_on_id:
            return add_on
    raise CatalogError(f"Unknown add-on {add_on_id!r} for vertical {vertical!r}")


def known_add_on_ids(vertical: str, add_on_ids: Iterable[str]) -> List[str]:
    """Filter to the add-on ids the vertical offers, keeping input order."""
    offered = {a.id for a in get_add_ons(vertical)}
    return [a for a in add_on_ids if a in offered]


def price_quote(vertical: str, package_id: str, add_on_ids: Iterable[str]) -> QuotePricing:
    """Price a package plus add-ons. Unknown ids raise CatalogError."""
    package = get_package(vertical, package_id)
    add_on_total = sum(get_add_on(vertical, a).price for a in set(add_on_ids))
    return QuotePricing(
        package_price=package.base_price,
        add_on_total=add_on_total,
        total=package.base_price + add_on_total,
    )


# -----------------------------------------------------------------------------
# Hardware
# -----------------------------------------------------------------------------

# Ordered mapping: category title -> {item name -> (quantity, note)}
_HardwareMap = Dict[str, Dict[str, Tuple[int, Optional[str]]]]


def _parse_hardware(raw: Iterable[Dict[str, Any]]) -> List[HardwareCategory]:
    return [
        HardwareCategory(
            title=c["title"],
            items=tuple(
                HardwareItem(name=i["name"], quantity=int(i["quantity"]), note=i.get("note"))
                for i in c.get("items") or []
            ),
        )
        for c in raw
    ]


def _to_map(categories: Iterable[HardwareCategory]) -> _HardwareMap:
    merged: _HardwareMap = {}
    for category in categories:
        items = merged.setdefault(category.title, {})
        for item in category.items:
            qty, note = items.get(item.name, (0, item.note))
            items[item.name] = (qty + item.quantity, note)
    return merged


def _from_map(merged: _HardwareMap) -> List[HardwareCategory]:
    return [
        HardwareCategory(
            title=title,
            items=tuple(HardwareItem(name=n, quantity=q, note=note) for n, (q, note) in items.items()),
        )
        for title, items in merged.items()
    ]


def merge_hardware(categories: Iterable[HardwareCategory]) -> List[HardwareCategory]:
    """Union keyed by category title then item name; quantities are summed."""
    return _from_map(_to_map(categories))


def diff_hardware(base: Iterable[HardwareCategory], target: Iterable[HardwareCategory]) -> List[HardwareCategory]:
    """Positive quantity deltas of ``target`` over ``base``."""
    base_map = _to_map(base)
    out: List[HardwareCategory] = []
    for title, items in _to_map(target).items():
        have = base_map.get(title, {})
        additions = []
        for name, (qty, note) in items.items():
            delta = qty - have.get(name, (0, None))[0]
            if delta > 0:
                additions.append(HardwareItem(name=name, quantity=delta, note=note))
        if additions:
            out.append(HardwareCategory(title=title, items=tuple(additions)))
    return out


@lru_cache(maxsize=1)
def _hardware_rollups() -> Dict[str, Tuple[HardwareCategory, ...]]:
    tiers = _catalog()["hardware"]["tiers"]
    basic = merge_hardware(_parse_hardware(tiers["A1"]))
    plus = merge_hardware(basic + diff_hardware(basic, _parse_hardware(tiers["A2"])))
    pro = merge_hardware(plus + diff_hardware(plus, _parse_hardware(tiers["A3"])))
    return {"A1": tuple(basic), "A2": tuple(plus), "A3": tuple(pro)}


def _add_on_hardware(add_on_id: str) -> List[HardwareCategory]:
    return _parse_hardware(_catalog()["hardware"]["add_ons"].get(add_on_id) or [])


def get_hardware_list(package_id: str, add_on_ids: Iterable[str]) -> List[HardwareCategory]:
    """Elder-tech hardware for a tier rollup plus the selected add-ons."""
    rollups = _hardware_rollups()
    if package_id not in rollups:
        raise CatalogError(f"Unknown package: {package_id!r}")
    extras: List[HardwareCategory] = []
    for add_on_id in add_on_ids:
        extras.extend(_add_on_hardware(add_on_id))
    return merge_hardware(list(rollups[package_id]) + extras)


# -----------------------------------------------------------------------------
# Features
# -----------------------------------------------------------------------------


def merge_features(categories: Iterable[FeatureCategory]) -> List[FeatureCategory]:
    """Union keyed by title; items de-duplicated, first occurrence wins."""
    merged: Dict[str, Dict[str, None]] = {}
    for category in categories:
        items = merged.setdefault(category.title, {})
        for item in category.items:
            items.setdefault(item, None)
    return [FeatureCategory(title=t, items=tuple(items)) for t, items in merged.items()]


def _parse_features(raw: Iterable[Dict[str, Any]]) -> List[FeatureCategory]:
    return [FeatureCategory(title=c["title"], items=tuple(c.get("items") or [])) for c in raw]


_TIER_FEATURE_GROUPS = {
    "A1": ("basic",),
    "A2": ("basic", "plus"),
    "A3": ("basic", "plus", "pro"),
}


def get_feature_categories(package_id: str, add_on_ids: Iterable[str]) -> List[FeatureCategory]:
    """Elder-tech features for a tier plus the selected add-ons."""
    groups = _TIER_FEATURE_GROUPS.get(package_id)
    if groups is None:
        raise CatalogError(f"Unknown package: {package_id!r}")
    features = _catalog()["features"]
    categories: List[FeatureCategory] = []
    for group in groups:
        categories.extend(_parse_features(features["tiers"][group]))
    for add_on_id in add_on_ids:
        categories.extend(_parse_features(features["add_ons"].get(add_on_id) or []))
    return merge_features(categories)
