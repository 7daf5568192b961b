"""Quote documents: context, reference and hash payload.

A quote is hashed over everything the customer is shown: the package and
add-on selection, prices, the derived hardware and feature lists, the fixed
deliverables/assumptions/exclusions, the customer context and the generation
timestamp. A revision carries ``prior_quote_hash``; since that pointer is part
of the payload a revision never hashes equal to the quote it replaces.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from docauth.catalog import (
    QuotePricing,
    get_add_on,
    get_feature_categories,
    get_hardware_list,
    get_package,
    price_quote,
)
from docauth.config import get_config
from docauth.core import HASH_ALGORITHM, canonical_sha256, compact_dict, now_rfc3339, parse_iso_date

quote_deliverables: Tuple[str, ...] = (
    "1-day installation crew of 2",
    "Onsite setup and configuration",
    "Essential customer training",
    "Complete test (certified) of all equipment post install",
    "1-year replacement warranty for all equipment",
)

quote_assumptions: Tuple[str, ...] = (
    "Pricing is one-time for listed equipment, configuration, and training.",
    "Existing Wi-Fi and power outlets are available where devices are installed.",
    "Local-first design keeps automations running during internet outages when power is available.",
)

quote_exclusions: Tuple[str, ...] = (
    "No monthly monitoring fees are included or required.",
    "Permitting, structural work, and trenching are out of scope.",
    "Cellular data plans are only added if explicitly selected and available in-market.",
)

CUSTOMER_FIELDS: Tuple[str, ...] = (
    "customer_name",
    "contact",
    "city",
    "home_type",
    "home_size",
    "internet_reliability",
)


@dataclass(frozen=True)
class QuoteContext:
    """A priced package selection, optionally stamped with its hash."""
    vertical: str
    package_id: str
    selected_add_ons: Tuple[str, ...]
    pricing: QuotePricing
    customer_name: Optional[str] = None
    contact: Optional[str] = None
    city: Optional[str] = None
    home_type: Optional[str] = None
    home_size: Optional[str] = None
    internet_reliability: Optional[str] = None
    generated_at: Optional[str] = None
    issued_at: Optional[str] = None
    quote_doc_version: Optional[str] = None
    quote_hash_algorithm: str = HASH_ALGORITHM
    quote_hash: Optional[str] = None
    prior_quote_hash: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "selected_add_ons", tuple(self.selected_add_ons))

    @property
    def reference(self) -> str:
        return build_quote_reference(self)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "vertical": self.vertical,
            "package_id": self.package_id,
            "selected_add_ons": list(self.selected_add_ons),
            "pricing": self.pricing.to_dict(),
        }
        for name in CUSTOMER_FIELDS + (
            "generated_at",
            "issued_at",
            "quote_doc_version",
            "quote_hash_algorithm",
            "quote_hash",
            "prior_quote_hash",
        ):
            d[name] = getattr(self, name)
        return compact_dict(d)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "QuoteContext":
        return cls(
            vertical=d.get("vertical") or get_config().documents.default_vertical.get(),
            package_id=d["package_id"],
            selected_add_ons=tuple(d.get("selected_add_ons") or ()),
            pricing=QuotePricing.from_dict(d["pricing"]),
            customer_name=d.get("customer_name"),
            contact=d.get("contact"),
            city=d.get("city"),
            home_type=d.get("home_type"),
            home_size=d.get("home_size"),
            internet_reliability=d.get("internet_reliability"),
            generated_at=d.get("generated_at"),
            issued_at=d.get("issued_at"),
            quote_doc_version=d.get("quote_doc_version"),
            quote_hash_algorithm=d.get("quote_hash_algorithm") or HASH_ALGORITHM,
            quote_hash=d.get("quote_hash"),
            prior_quote_hash=d.get("prior_quote_hash"),
        )


def format_reference_date(value: Optional[str]) -> str:
    """YYYYMMDD of an ISO timestamp, falling back to today (UTC)."""
    d = parse_iso_date(value) or datetime.now(timezone.utc).date()
    return d.strftime("%Y%m%d")


def build_quote_reference(quote: QuoteContext) -> str:
    """``{PREFIX}-{tier}-{YYYYMMDD}``, e.g. ``KAEC-A2-20250301``."""
    prefix = get_config().documents.reference_prefix.get()
    return f"{prefix}-{quote.package_id}-{format_reference_date(quote.generated_at)}"


def _hardware_payload(quote: QuoteContext) -> List[Dict[str, Any]]:
    if quote.vertical == "home-security":
        return []
    categories = get_hardware_list(quote.package_id, quote.selected_add_ons)
    return [
        {
            "title": c.title,
            "items": [i.to_dict() for i in sorted(c.items, key=lambda i: i.name)],
        }
        for c in sorted(categories, key=lambda c: c.title)
    ]


def _features_payload(quote: QuoteContext) -> List[Dict[str, Any]]:
    if quote.vertical == "home-security":
        return []
    categories = get_feature_categories(quote.package_id, quote.selected_add_ons)
    return [c.to_dict() for c in sorted(categories, key=lambda c: c.title)]


def customer_context(quote: QuoteContext) -> Dict[str, str]:
    return {name: getattr(quote, name) or "" for name in CUSTOMER_FIELDS}


def build_hash_payload(quote: QuoteContext) -> Dict[str, Any]:
    """Everything the quote hash commits to.

    Raises CatalogError for a vertical, package or add-on the catalog does not
    offer.
    """
    package = get_package(quote.vertical, quote.package_id)
    add_on_keys = sorted(set(quote.selected_add_ons))
    labels = [get_add_on(quote.vertical, a).label for a in add_on_keys]

    return {
        "reference": build_quote_reference(quote),
        "quote_doc_version": quote.quote_doc_version or get_config().documents.quote_doc_version.get(),
        "quote_hash_algorithm": quote.quote_hash_algorithm or HASH_ALGORITHM,
        "vertical": quote.vertical,
        "package": {"id": package.id, "name": package.name},
        "selected_add_ons": add_on_keys,
        "add_on_labels": labels,
        "totals": quote.pricing.to_dict(),
        "hardware": _hardware_payload(quote),
        "features": _features_payload(quote),
        "deliverables": list(quote_deliverables),
        "assumptions": list(quote_assumptions),
        "exclusions": list(quote_exclusions),
        "customer_context": customer_context(quote),
        "generated_at": quote.generated_at or "",
        "prior_quote_hash": quote.prior_quote_hash or "",
    }


def compute_hash(quote: QuoteContext) -> str:
    return canonical_sha256(build_hash_payload(quote))


def stamp_hash(quote: QuoteContext) -> QuoteContext:
    """Return the quote with ``quote_hash`` set to its computed hash."""
    return replace(quote, quote_hash=compute_hash(quote))


def build_quote(
    package_id: str,
    add_on_ids: Iterable[str] = (),
    *,
    vertical: Optional[str] = None,
    generated_at: Optional[str] = None,
    prior_quote_hash: Optional[str] = None,
    **customer: Optional[str],
) -> QuoteContext:
    """Price a selection from the catalog, stamp it and hash it.

    Keyword arguments beyond the named ones are customer context fields
    (``customer_name``, ``contact``, ``city``, ``home_type``, ``home_size``,
    ``internet_reliability``).
    """
    unknown = set(customer) - set(CUSTOMER_FIELDS)
    if unknown:
        raise TypeError(f"Unknown customer fields: {sorted(unknown)}")

    vertical = vertical or get_config().documents.default_vertical.get()
    add_ons = tuple(dict.fromkeys(add_on_ids))
    generated_at = generated_at or now_rfc3339()
    quote = QuoteContext(
        vertical=vertical,
        package_id=package_id,
        selected_add_ons=add_ons,
        pricing=price_quote(vertical, package_id, add_ons),
        generated_at=generated_at,
        issued_at=generated_at,
        quote_doc_version=get_config().documents.quote_doc_version.get(),
        prior_quote_hash=prior_quote_hash,
        **customer,
    )
    return stamp_hash(quote)


def supersede_quote(previous: QuoteContext, **changes: Any) -> QuoteContext:
    """Build a revision of ``previous`` that points back at its hash.

    ``changes`` may replace the selection (``package_id``, ``selected_add_ons``,
    ``vertical``), customer fields or ``generated_at``. The revision is
    re-priced from the catalog and re-hashed.
    """
    prior = previous.quote_hash or compute_hash(previous)
    vertical = changes.pop("vertical", previous.vertical)
    package_id = changes.pop("package_id", previous.package_id)
    add_ons = tuple(dict.fromkeys(changes.pop("selected_add_ons", previous.selected_add_ons)))
    generated_at = changes.pop("generated_at", None) or now_rfc3339()

    customer = {name: getattr(previous, name) for name in CUSTOMER_FIELDS}
    for name in list(changes):
        if name not in CUSTOMER_FIELDS:
            raise TypeError(f"Cannot change {name!r} on a quote revision")
        customer[name] = changes.pop(name)

    return build_quote(
        package_id,
        add_ons,
        vertical=vertical,
        generated_at=generated_at,
        prior_quote_hash=prior,
        **customer,
    )
