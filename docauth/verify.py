"""Token verification and resume.

Verification rebuilds a document from its token, recomputes the hash and
compares it with the hash the token claims. Resume restores a quote from its
resume token and names the funnel step to continue at.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from docauth import agreement, quote as quote_codec, sicar
from docauth.agreement import AgreementContext
from docauth.catalog import CatalogError
from docauth.core import DocType
from docauth.observability import Layer, get_logger
from docauth.quote import QuoteContext
from docauth.sicar import Certificate
from docauth.tokens import (
    build_quote_from_resume_payload,
    parse_agreement_token,
    parse_resume_token,
    parse_sicar_token,
)

logger = get_logger(__name__, Layer.VERIFY)

STATUS_VERIFIED = "verified"
STATUS_INVALID = "invalid"

REASON_PARAMETERS = "Missing or invalid verification parameters."
REASON_MISMATCH = "Hash mismatch."
INVALID_TOKEN_REASONS: Dict[DocType, str] = {
    DocType.QUOTE: "Invalid quote token.",
    DocType.AGREEMENT: "Invalid agreement token.",
    DocType.SICAR: "Invalid SICAR token.",
}

RESUME_PATHS: Dict[str, str] = {
    "agreement": "/agreementReview",
    "payment": "/payment",
    "schedule": "/schedule",
}


@dataclass(frozen=True)
class VerificationResult:
    status: str
    doc_type: Optional[DocType] = None
    reason: Optional[str] = None
    expected_hash: Optional[str] = None
    computed_hash: Optional[str] = None
    document: Any = None

    @property
    def verified(self) -> bool:
        return self.status == STATUS_VERIFIED

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"status": self.status}
        if self.doc_type is not None:
            d["doc_type"] = self.doc_type.value
        if self.reason:
            d["reason"] = self.reason
        if self.expected_hash:
            d["expected_hash"] = self.expected_hash
        if self.computed_hash:
            d["computed_hash"] = self.computed_hash
        return d


@dataclass(frozen=True)
class ResumeOutcome:
    status: str
    quote: Optional[QuoteContext] = None
    step: Optional[str] = None
    path: Optional[str] = None


def _rebuild_quote(payload: Dict[str, Any]) -> Tuple[QuoteContext, str, str]:
    rebuilt = build_quote_from_resume_payload(payload)
    return rebuilt, payload["quote_hash"], quote_codec.compute_hash(rebuilt)


def _rebuild_agreement(payload: Dict[str, Any]) -> Tuple[AgreementContext, str, str]:
    context = AgreementContext.from_dict(payload)
    return context, payload["hash"], agreement.compute_hash(context)


def _rebuild_sicar(payload: Dict[str, Any]) -> Tuple[Certificate, str, str]:
    certificate = Certificate.from_dict(payload["certificate"])
    return certificate, payload["hash"], sicar.compute_hash(certificate)


_HANDLERS: Dict[DocType, Tuple[Callable[[Optional[str]], Optional[Dict[str, Any]]], Callable[[Dict[str, Any]], Tuple[Any, str, str]]]] = {
    DocType.QUOTE: (parse_resume_token, _rebuild_quote),
    DocType.AGREEMENT: (parse_agreement_token, _rebuild_agreement),
    DocType.SICAR: (parse_sicar_token, _rebuild_sicar),
}


def _invalid(doc_type: Optional[DocType], reason: str, **kw: Any) -> VerificationResult:
    logger.info("Verification failed", operation="verify_token", doc_type=getattr(doc_type, "value", None), reason=reason)
    return VerificationResult(status=STATUS_INVALID, doc_type=doc_type, reason=reason, **kw)


def verify_token(doc_type: Optional[str], token: Optional[str]) -> VerificationResult:
    """Verify a document token against the hash it carries.

    Never raises; every failure is reported through the result.
    """
    try:
        kind = DocType(doc_type) if doc_type else None
    except ValueError:
        kind = None
    if kind is None or not token:
        return _invalid(kind, REASON_PARAMETERS)

    parse, rebuild = _HANDLERS[kind]
    payload = parse(token)
    if payload is None:
        return _invalid(kind, INVALID_TOKEN_REASONS[kind])
    try:
        document, expected, computed = rebuild(payload)
    except (CatalogError, KeyError, TypeError, ValueError, RecursionError) as ex:
        logger.debug("Token did not rebuild", operation="verify_token", doc_type=kind.value, error=str(ex))
        return _invalid(kind, INVALID_TOKEN_REASONS[kind])

    if expected != computed:
        return _invalid(kind, REASON_MISMATCH, expected_hash=expected, computed_hash=computed, document=document)

    logger.info("Verification succeeded", operation="verify_token", doc_type=kind.value, hash=computed)
    return VerificationResult(
        status=STATUS_VERIFIED,
        doc_type=kind,
        expected_hash=expected,
        computed_hash=computed,
        document=document,
    )


def parse_verify_url(url: str) -> Tuple[Optional[str], Optional[str]]:
    """``(doc, t)`` query parameters of a verification URL."""
    query = parse_qs(urlparse(url or "").query)
    doc = (query.get("doc") or [None])[0]
    token = (query.get("t") or [None])[0]
    return doc, token


def verify_url(url: str) -> VerificationResult:
    doc, token = parse_verify_url(url)
    return verify_token(doc, token)


def resume_from_token(token: Optional[str], step: Optional[str] = None) -> ResumeOutcome:
    """Restore a quote from a resume token.

    The status is ``missing`` without a token, ``invalid`` when the token does
    not decode or names entries the catalog does not offer, else ``restored``.
    The step defaults to ``agreement``; unknown steps fall back to it.
    """
    if not token:
        return ResumeOutcome(status="missing")
    payload = parse_resume_token(token)
    if payload is None:
        return ResumeOutcome(status="invalid")
    try:
        restored = build_quote_from_resume_payload(payload)
    except CatalogError as ex:
        logger.info("Resume token names unknown catalog entry", operation="resume_from_token", error=str(ex))
        return ResumeOutcome(status="invalid")

    step = step if step in RESUME_PATHS else "agreement"
    return ResumeOutcome(status="restored", quote=restored, step=step, path=RESUME_PATHS[step])
