"""Authority metadata for quotes, agreements and certificates.

The authority block is what a printed or emailed document shows about its own
provenance: type and version, reference, issue time, full and shortened hash,
the hash it supersedes, the quote it is bound to, and the resume, verify and
print links carrying its token.

This module only composes. Hashes come from the document (when already
stamped) or from its codec; tokens come from ``docauth.tokens``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import quote as url_quote

from docauth.agreement import AgreementContext, agreement_hash, build_agreement_reference, is_provisional
from docauth.config import get_config
from docauth.core import HASH_ALGORITHM, DocType, now_rfc3339
from docauth.observability import Layer, get_logger
from docauth.quote import QuoteContext, build_quote_reference, compute_hash as compute_quote_hash
from docauth.sicar import Certificate, build_sicar_reference, compute_hash as compute_sicar_hash
from docauth.tokens import build_agreement_token, build_sicar_token, create_resume_token

logger = get_logger(__name__, Layer.AUTHORITY)

Document = Union[QuoteContext, AgreementContext, Certificate]


@dataclass(frozen=True)
class DocumentTypeConfig:
    doc_type: DocType
    version_setting: str
    supersedes_field: Optional[str]
    default_resume_step: str
    print_route: str
    hash_algorithm: str = HASH_ALGORITHM

    @property
    def version(self) -> str:
        return getattr(get_config().documents, self.version_setting).get()


DOCUMENT_TYPES: Dict[DocType, DocumentTypeConfig] = {
    DocType.QUOTE: DocumentTypeConfig(
        doc_type=DocType.QUOTE,
        version_setting="quote_doc_version",
        supersedes_field="prior_quote_hash",
        default_resume_step="agreement",
        print_route="/quotePrint",
    ),
    DocType.AGREEMENT: DocumentTypeConfig(
        doc_type=DocType.AGREEMENT,
        version_setting="agreement_doc_version",
        supersedes_field="supersedes_agreement_hash",
        default_resume_step="payment",
        print_route="/agreementPrint",
    ),
    DocType.SICAR: DocumentTypeConfig(
        doc_type=DocType.SICAR,
        version_setting="sicar_doc_version",
        supersedes_field=None,
        default_resume_step="view-only",
        print_route="/certificate",
    ),
}


@dataclass(frozen=True)
class QuoteBinding:
    ref: str
    hash_full: str
    hash_short: str


@dataclass(frozen=True)
class AuthorityMeta:
    doc_type: DocType
    version: str
    reference: str
    issued_at: str
    hash_full: str
    hash_short: str
    resume_url: str
    resume_url_display: str
    verification_url: str
    print_url: str
    token: str
    supersedes_hash_full: Optional[str] = None
    supersedes_hash_short: Optional[str] = None
    quote_binding: Optional[QuoteBinding] = None
    provisional: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["doc_type"] = self.doc_type.value
        return {k: v for k, v in d.items() if v is not None}


def shorten_middle(value: Optional[str], head: Optional[int] = None, tail: Optional[int] = None) -> str:
    """Keep the first ``head`` and last ``tail`` characters joined by an ellipsis."""
    if not value:
        return "None"
    links = get_config().links
    head = links.hash_display_head.get() if head is None else head
    tail = links.hash_display_tail.get() if tail is None else tail
    if len(value) <= head + tail:
        return value
    return f"{value[:head]}…{value[-tail:]}"


def _base(base_url: Optional[str]) -> str:
    return (base_url or get_config().links.base_url.get()).rstrip("/")


def build_resume_url(token: str, step: Optional[str] = None, *, base_url: Optional[str] = None) -> str:
    step_param = f"&step={url_quote(step, safe='')}" if step else ""
    return f"{_base(base_url)}/resume?t={url_quote(token, safe='')}{step_param}"


def build_verification_url(doc_type: DocType, token: str, *, base_url: Optional[str] = None) -> str:
    return f"{_base(base_url)}/verify?doc={DocType(doc_type).value}&t={url_quote(token, safe='')}"


def build_print_url(doc_type: DocType, token: str, *, base_url: Optional[str] = None) -> str:
    route = DOCUMENT_TYPES[DocType(doc_type)].print_route
    return f"{_base(base_url)}{route}?t={url_quote(token, safe='')}"


def build_review_url(path: str, token: str, *, base_url: Optional[str] = None) -> str:
    return f"{_base(base_url)}{path}?t={url_quote(token, safe='')}"


def agreement_resume_step(context: AgreementContext) -> str:
    return DOCUMENT_TYPES[DocType.AGREEMENT].default_resume_step if context.accepted else "agreement"


def _supersedes(value: Optional[str]) -> Dict[str, Optional[str]]:
    return {
        "supersedes_hash_full": value or None,
        "supersedes_hash_short": shorten_middle(value) if value else None,
    }


def _quote_authority(quote: QuoteContext, token: Optional[str], base_url: Optional[str]) -> AuthorityMeta:
    config = DOCUMENT_TYPES[DocType.QUOTE]
    token = token or create_resume_token(quote)
    hash_full = quote.quote_hash or compute_quote_hash(quote)
    resume_url = build_resume_url(token, config.default_resume_step, base_url=base_url)
    return AuthorityMeta(
        doc_type=DocType.QUOTE,
        version=quote.quote_doc_version or config.version,
        reference=build_quote_reference(quote),
        issued_at=quote.issued_at or quote.generated_at or now_rfc3339(),
        hash_full=hash_full,
        hash_short=shorten_middle(hash_full),
        resume_url=resume_url,
        resume_url_display=shorten_middle(resume_url),
        verification_url=build_verification_url(DocType.QUOTE, token, base_url=base_url),
        print_url=build_print_url(DocType.QUOTE, token, base_url=base_url),
        token=token,
        **_supersedes(quote.prior_quote_hash),
    )


def _agreement_authority(context: AgreementContext, token: Optional[str], base_url: Optional[str]) -> AuthorityMeta:
    quote = context.quote
    hash_full = agreement_hash(context)
    token = token or build_agreement_token(context, hash_full)
    acceptance = context.acceptance
    accepted_on = (acceptance.accepted_at or acceptance.acceptance_date) if acceptance else None
    issued_at = (
        accepted_on
        or quote.issued_at
        or quote.generated_at
        or now_rfc3339()
    )
    quote_hash = quote.quote_hash or compute_quote_hash(quote)
    # Resuming an agreement continues the funnel from the bound quote.
    resume_url = build_resume_url(create_resume_token(quote), agreement_resume_step(context), base_url=base_url)
    return AuthorityMeta(
        doc_type=DocType.AGREEMENT,
        version=context.agreement_version,
        reference=build_agreement_reference(quote),
        issued_at=issued_at,
        hash_full=hash_full,
        hash_short=shorten_middle(hash_full),
        resume_url=resume_url,
        resume_url_display=shorten_middle(resume_url),
        verification_url=build_verification_url(DocType.AGREEMENT, token, base_url=base_url),
        print_url=build_print_url(DocType.AGREEMENT, token, base_url=base_url),
        token=token,
        quote_binding=QuoteBinding(
            ref=build_quote_reference(quote),
            hash_full=quote_hash,
            hash_short=shorten_middle(quote_hash),
        ),
        provisional=is_provisional(context),
        **_supersedes(context.supersedes_agreement_hash),
    )


def _sicar_authority(certificate: Certificate, token: Optional[str], base_url: Optional[str]) -> AuthorityMeta:
    hash_full = compute_sicar_hash(certificate)
    token = token or build_sicar_token(certificate, hash_full)
    print_url = build_print_url(DocType.SICAR, token, base_url=base_url)
    if certificate.acceptance:
        issued_at = certificate.acceptance.signed_at
    elif certificate.audit_log:
        issued_at = certificate.audit_log[0].timestamp
    else:
        issued_at = now_rfc3339()
    binding = None
    if certificate.quote_id:
        binding = QuoteBinding(ref=certificate.quote_id, hash_full="", hash_short=shorten_middle(certificate.quote_id))
    return AuthorityMeta(
        doc_type=DocType.SICAR,
        version=DOCUMENT_TYPES[DocType.SICAR].version,
        reference=build_sicar_reference(certificate),
        issued_at=issued_at,
        hash_full=hash_full,
        hash_short=shorten_middle(hash_full),
        resume_url=print_url,
        resume_url_display=shorten_middle(print_url),
        verification_url=build_verification_url(DocType.SICAR, token, base_url=base_url),
        print_url=print_url,
        token=token,
        quote_binding=binding,
        provisional=not certificate.immutable,
    )


def build_authority(document: Document, token: Optional[str] = None, *, base_url: Optional[str] = None) -> AuthorityMeta:
    """Authority metadata for a quote, agreement or certificate.

    Args:
        document: the document to describe
        token: token to embed in links; minted from the document when omitted
        base_url: link origin; defaults to ``links.base_url``
    """
    if isinstance(document, QuoteContext):
        meta = _quote_authority(document, token, base_url)
    elif isinstance(document, AgreementContext):
        meta = _agreement_authority(document, token, base_url)
    elif isinstance(document, Certificate):
        meta = _sicar_authority(document, token, base_url)
    else:
        raise TypeError(f"No authority for {type(document).__name__}")

    logger.debug(
        "Authority built",
        operation="build_authority",
        doc_type=meta.doc_type.value,
        reference=meta.reference,
        hash=meta.hash_short,
    )
    return meta
