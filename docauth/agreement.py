"""Agreement documents bound to a quote.

The agreement hash commits to the bound quote (reference, version, hash and
prior hash), the priced selection, the customer context, the identifiers of
the agreement text blocks and the acceptance snapshot. Until the customer
accepts, the hash is computed over a fixed "unaccepted" acceptance block and
is provisional: accepting changes it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Tuple

from docauth.catalog import get_add_on, get_package
from docauth.config import get_config
from docauth.core import HASH_ALGORITHM, canonical_sha256, compact_dict, now_rfc3339, parse_iso_date
from docauth.quote import QuoteContext, build_quote_reference, compute_hash as compute_quote_hash, customer_context

CONTENT_IDENTIFIERS: Tuple[str, ...] = (
    "scope:v1",
    "assumptions:v1",
    "exclusions:v1",
    "offline-behavior:v1",
    "installation-window:v1",
    "warranty-placeholders:v1",
    "terms:v1",
    "commitments:v1",
)


@dataclass(frozen=True)
class AgreementAcceptance:
    """Customer acceptance of an agreement.

    Only ``accepted``, ``full_name`` and ``acceptance_date`` are hashed; the
    rest records when and against which hash the acceptance happened.
    """
    accepted: bool = False
    full_name: str = ""
    acceptance_date: str = ""
    accepted_at: Optional[str] = None
    agreement_version: Optional[str] = None
    agreement_hash: Optional[str] = None
    supersedes_agreement_hash: Optional[str] = None
    email_to: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return compact_dict({
            "accepted": self.accepted,
            "full_name": self.full_name,
            "acceptance_date": self.acceptance_date,
            "accepted_at": self.accepted_at,
            "agreement_version": self.agreement_version,
            "agreement_hash": self.agreement_hash,
            "supersedes_agreement_hash": self.supersedes_agreement_hash,
            "email_to": self.email_to,
        })

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AgreementAcceptance":
        return cls(
            accepted=bool(d.get("accepted", False)),
            full_name=d.get("full_name") or "",
            acceptance_date=d.get("acceptance_date") or "",
            accepted_at=d.get("accepted_at"),
            agreement_version=d.get("agreement_version"),
            agreement_hash=d.get("agreement_hash"),
            supersedes_agreement_hash=d.get("supersedes_agreement_hash"),
            email_to=d.get("email_to"),
        )


@dataclass(frozen=True)
class AgreementContext:
    quote: QuoteContext
    acceptance: Optional[AgreementAcceptance] = None
    supersedes_agreement_hash: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return bool(self.acceptance and self.acceptance.accepted)

    @property
    def agreement_version(self) -> str:
        if self.acceptance and self.acceptance.agreement_version:
            return self.acceptance.agreement_version
        return get_config().documents.agreement_doc_version.get()

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"quote": self.quote.to_dict()}
        if self.acceptance is not None:
            d["acceptance"] = self.acceptance.to_dict()
        if self.supersedes_agreement_hash:
            d["supersedes_agreement_hash"] = self.supersedes_agreement_hash
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AgreementContext":
        acceptance = d.get("acceptance")
        return cls(
            quote=QuoteContext.from_dict(d["quote"]),
            acceptance=AgreementAcceptance.from_dict(acceptance) if acceptance else None,
            supersedes_agreement_hash=d.get("supersedes_agreement_hash"),
        )


def build_agreement_reference(quote: QuoteContext) -> str:
    """Agreements share the reference of the quote they bind."""
    return build_quote_reference(quote)


def build_hash_payload(context: AgreementContext) -> Dict[str, Any]:
    quote = context.quote
    package = get_package(quote.vertical, quote.package_id)
    add_ons = [get_add_on(quote.vertical, a) for a in sorted(set(quote.selected_add_ons))]
    acceptance = context.acceptance or AgreementAcceptance()

    return {
        "agreement_version": context.agreement_version,
        "content_identifiers": list(CONTENT_IDENTIFIERS),
        "quote": {
            "reference": build_quote_reference(quote),
            "quote_version": quote.quote_doc_version or get_config().documents.quote_doc_version.get(),
            "quote_hash": quote.quote_hash or "",
            "prior_quote_hash": quote.prior_quote_hash or "",
            "hash_algorithm": quote.quote_hash_algorithm or HASH_ALGORITHM,
        },
        "vertical": quote.vertical,
        "package": {"id": package.id, "name": package.name, "price": quote.pricing.package_price},
        "add_ons": [{"id": a.id, "label": a.label, "price": a.price} for a in add_ons],
        "totals": quote.pricing.to_dict(),
        "customer_context": customer_context(quote),
        "acceptance": {
            "accepted": acceptance.accepted,
            "full_name": acceptance.full_name.strip(),
            "acceptance_date": acceptance.acceptance_date,
        },
        "supersedes_agreement_hash": context.supersedes_agreement_hash or "",
        "generated_at": quote.generated_at or "",
    }


def compute_hash(context: AgreementContext) -> str:
    return canonical_sha256(build_hash_payload(context))


def agreement_hash(context: AgreementContext) -> str:
    """Stamped hash of an accepted agreement, else the computed one."""
    if context.acceptance and context.acceptance.agreement_hash:
        return context.acceptance.agreement_hash
    return compute_hash(context)


def is_provisional(context: AgreementContext) -> bool:
    """An agreement's hash is provisional until the customer accepts it."""
    return not context.accepted


def create_agreement(quote: QuoteContext) -> AgreementContext:
    """Bind an agreement to a quote, stamping the quote hash if missing."""
    if not quote.quote_hash:
        quote = replace(quote, quote_hash=compute_quote_hash(quote))
    return AgreementContext(quote=quote)


def accept_agreement(
    context: AgreementContext,
    full_name: str,
    acceptance_date: str,
    *,
    accepted_at: Optional[str] = None,
    email_to: Optional[str] = None,
) -> AgreementContext:
    """Record the customer's acceptance and stamp the resulting hash.

    Raises ValueError for a blank name or an acceptance date that is not an
    ISO date.
    """
    name = (full_name or "").strip()
    if not name:
        raise ValueError("full_name is required to accept an agreement")
    if parse_iso_date(acceptance_date) is None:
        raise ValueError(f"acceptance_date must be an ISO date, got {acceptance_date!r}")

    acceptance = AgreementAcceptance(
        accepted=True,
        full_name=name,
        acceptance_date=acceptance_date,
        accepted_at=accepted_at or now_rfc3339(),
        agreement_version=get_config().documents.agreement_doc_version.get(),
        supersedes_agreement_hash=context.supersedes_agreement_hash,
        email_to=email_to,
    )
    accepted = replace(context, acceptance=acceptance)
    return replace(accepted, acceptance=replace(acceptance, agreement_hash=compute_hash(accepted)))


def revise_agreement(context: AgreementContext, quote: QuoteContext) -> AgreementContext:
    """New unaccepted agreement for ``quote`` that supersedes ``context``."""
    revised = create_agreement(quote)
    return replace(revised, supersedes_agreement_hash=agreement_hash(context))
