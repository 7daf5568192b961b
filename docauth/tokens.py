"""Portable document tokens.

A token is the canonical JSON of a payload, base64url-encoded without
padding, so it can travel in a ``t=`` query parameter. Three payload kinds
exist:

- quote resume tokens: enough of a quote to rebuild it from the catalog
- agreement tokens: the bound quote, the acceptance snapshot and the hash
- SICAR tokens: the full certificate and its hash

Decoding never raises. Anything that is not a well-formed payload of the
expected kind decodes to ``None``.
"""

from __future__ import annotations

import json
import re
from datetime import date
from typing import Any, Dict, Optional, Union

from docauth.agreement import AgreementContext, agreement_hash
from docauth.catalog import QuotePricing, get_package, known_add_on_ids, price_quote
from docauth.config import get_config
from docauth.core import (
    HASH_ALGORITHM,
    DocType,
    b64url_decode,
    b64url_encode,
    canonical_json_bytes,
    compact_dict,
    now_rfc3339,
)
from docauth.observability import Layer, get_logger
from docauth.quote import QuoteContext, build_quote_reference, compute_hash as compute_quote_hash
from docauth.schema import validate_against_schema
from docauth.sicar import Certificate, compute_hash as compute_sicar_hash

logger = get_logger(__name__, Layer.TOKEN)

QUOTE_RESUME_SCHEMA = "quote-resume-token"
AGREEMENT_TOKEN_SCHEMA = "agreement-token"
SICAR_TOKEN_SCHEMA = "sicar-token"

TOKEN_SCHEMAS: Dict[DocType, str] = {
    DocType.QUOTE: QUOTE_RESUME_SCHEMA,
    DocType.AGREEMENT: AGREEMENT_TOKEN_SCHEMA,
    DocType.SICAR: SICAR_TOKEN_SCHEMA,
}

_REFERENCE_DATE_RE = re.compile(r"-(\d{4})(\d{2})(\d{2})$")


def encode_token(payload: Dict[str, Any]) -> str:
    """Canonical JSON of ``payload``, base64url without padding."""
    if not isinstance(payload, dict):
        raise TypeError("token payload must be a mapping")
    return b64url_encode(canonical_json_bytes(payload))


def decode_token(token: Optional[str], schema: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Decode a token to its payload, or ``None`` if it is not one.

    Args:
        token: the base64url string
        schema: optional packaged schema name the payload must satisfy
    """
    if not token:
        return None
    try:
        payload = json.loads(b64url_decode(token).decode("utf-8"))
    except (ValueError, TypeError, RecursionError) as ex:
        logger.debug("Token decode failed", operation="decode_token", error=str(ex))
        return None
    if not isinstance(payload, dict):
        logger.debug("Token payload is not an object", operation="decode_token")
        return None
    if schema:
        try:
            errors = validate_against_schema(payload, schema)
        except RecursionError:
            errors = ["payload nested too deeply"]
        if errors:
            logger.debug("Token payload failed schema", operation="decode_token", schema=schema, errors=errors[:5])
            return None
    return payload


# -----------------------------------------------------------------------------
# Quote resume tokens
# -----------------------------------------------------------------------------


def build_resume_payload(quote: QuoteContext) -> Dict[str, Any]:
    contact = quote.contact or ""
    is_email = "@" in contact
    return compact_dict({
        "quote_ref": build_quote_reference(quote),
        "quote_doc_version": quote.quote_doc_version or get_config().documents.quote_doc_version.get(),
        "quote_hash": quote.quote_hash or compute_quote_hash(quote),
        "tier_key": quote.package_id,
        "add_on_keys": sorted(set(quote.selected_add_ons)),
        "vertical": quote.vertical,
        "customer_name": quote.customer_name or None,
        "customer_email": contact if is_email else None,
        "customer_phone": contact if contact and not is_email else None,
        "city": quote.city or None,
        "home_type": quote.home_type or None,
        "home_size": quote.home_size or None,
        "internet_reliability": quote.internet_reliability or None,
        "generated_at": quote.generated_at or None,
        "prior_quote_hash": quote.prior_quote_hash or None,
    })


def create_resume_token(quote: QuoteContext) -> str:
    return encode_token(build_resume_payload(quote))


def parse_resume_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    return decode_token(token, QUOTE_RESUME_SCHEMA)


def derive_generated_at_from_reference(quote_ref: str) -> Optional[str]:
    """ISO date encoded in a ``PREFIX-TIER-YYYYMMDD`` reference, if valid."""
    m = _REFERENCE_DATE_RE.search(quote_ref or "")
    if not m:
        return None
    try:
        return date(int(m.group(1)), int(m.group(2)), int(m.group(3))).isoformat()
    except ValueError:
        return None


def build_quote_from_resume_payload(payload: Dict[str, Any]) -> QuoteContext:
    """Rebuild a quote from a resume payload, pricing it from the catalog.

    Add-on ids the vertical does not offer are dropped. An unknown vertical or
    tier raises CatalogError.
    """
    vertical = payload.get("vertical") or get_config().documents.default_vertical.get()
    package = get_package(vertical, payload["tier_key"])
    add_ons = tuple(sorted(set(known_add_on_ids(vertical, payload.get("add_on_keys") or []))))
    generated_at = (
        payload.get("generated_at")
        or derive_generated_at_from_reference(payload.get("quote_ref", ""))
        or now_rfc3339()
    )
    pricing: QuotePricing = price_quote(vertical, package.id, add_ons)

    return QuoteContext(
        vertical=vertical,
        package_id=package.id,
        selected_add_ons=add_ons,
        pricing=pricing,
        customer_name=payload.get("customer_name"),
        contact=payload.get("customer_email") or payload.get("customer_phone"),
        city=payload.get("city"),
        home_type=payload.get("home_type"),
        home_size=payload.get("home_size"),
        internet_reliability=payload.get("internet_reliability"),
        generated_at=generated_at,
        issued_at=generated_at,
        quote_doc_version=payload.get("quote_doc_version"),
        quote_hash_algorithm=HASH_ALGORITHM,
        quote_hash=payload.get("quote_hash"),
        prior_quote_hash=payload.get("prior_quote_hash"),
    )


def restore_quote_from_token(token: Optional[str]) -> Optional[QuoteContext]:
    payload = parse_resume_token(token)
    return build_quote_from_resume_payload(payload) if payload else None


# -----------------------------------------------------------------------------
# Agreement and SICAR tokens
# -----------------------------------------------------------------------------


def build_agreement_token(context: AgreementContext, hash_full: Optional[str] = None) -> str:
    payload = context.to_dict()
    payload["hash"] = hash_full or agreement_hash(context)
    return encode_token(payload)


def parse_agreement_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    return decode_token(token, AGREEMENT_TOKEN_SCHEMA)


def build_sicar_token(certificate: Certificate, hash_full: Optional[str] = None) -> str:
    return encode_token({
        "certificate": certificate.to_dict(),
        "hash": hash_full or compute_sicar_hash(certificate),
    })


def parse_sicar_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    return decode_token(token, SICAR_TOKEN_SCHEMA)


def parse_document_token(doc_type: Union[DocType, str], token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a token of the given document type.

    Raises ValueError for an unknown document type.
    """
    return decode_token(token, TOKEN_SCHEMAS[DocType(doc_type)])
