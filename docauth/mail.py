"""Document email requests and the sender contract.

The engine assembles what a quote or agreement email needs (recipient,
authority metadata, links and a little customer context) and hands it to a
``MailSender``. Delivery belongs to the sender: the engine neither retries nor
interprets provider errors beyond logging them.
"""

from __future__ import annotations

import re
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from docauth.agreement import AgreementContext, agreement_hash
from docauth.authority import (
    DOCUMENT_TYPES,
    agreement_resume_step,
    build_authority,
    build_print_url,
    build_resume_url,
    build_review_url,
    build_verification_url,
    shorten_middle,
)
from docauth.core import DocType
from docauth.observability import Layer, get_logger
from docauth.quote import QuoteContext
from docauth.tokens import build_agreement_token, create_resume_token

logger = get_logger(__name__, Layer.MAIL)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(value: Optional[str]) -> bool:
    if not value:
        return False
    return bool(EMAIL_RE.match(value.strip()))


@dataclass(frozen=True)
class EmailLinks:
    print_url: str
    verify_url: str
    resume_url: str
    review_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d = {"print_url": self.print_url, "verify_url": self.verify_url, "resume_url": self.resume_url}
        if self.review_url:
            d["review_url"] = self.review_url
        return d


@dataclass(frozen=True)
class EmailRequest:
    to: str
    meta: Dict[str, Any]
    links: EmailLinks
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "meta": dict(self.meta),
            "links": self.links.to_dict(),
            "context": {k: v for k, v in self.context.items() if v is not None},
        }


@dataclass(frozen=True)
class EmailSendResponse:
    ok: bool
    provider: str
    id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EmailSendResponse":
        return cls(
            ok=bool(d.get("ok", False)),
            provider=str(d.get("provider") or "unknown"),
            id=d.get("id"),
            error=d.get("error"),
        )


class MailSender(Protocol):
    """Anything that can deliver an ``EmailRequest``."""

    def send(self, request: EmailRequest) -> EmailSendResponse:
        ...


class MockMailSender:
    """Sender that records requests instead of delivering them."""

    def __init__(self, fail_with: Optional[str] = None):
        self.sent: List[EmailRequest] = []
        self._fail_with = fail_with
        self._lock = threading.Lock()

    def send(self, request: EmailRequest) -> EmailSendResponse:
        with self._lock:
            if self._fail_with:
                return EmailSendResponse(ok=False, provider="mock", error=self._fail_with)
            self.sent.append(request)
            return EmailSendResponse(ok=True, provider="mock", id=f"mock-{uuid.uuid4().hex[:12]}")


def _customer_context(quote: QuoteContext) -> Dict[str, Any]:
    return {"name": quote.customer_name, "city": quote.city, "tier": quote.package_id}


def build_quote_email_request(
    quote: QuoteContext,
    token: Optional[str] = None,
    *,
    base_url: Optional[str] = None,
) -> Optional[EmailRequest]:
    """Email request for a quote, or ``None`` without a valid recipient."""
    to = (quote.contact or "").strip()
    if not is_valid_email(to):
        return None

    token = token or create_resume_token(quote)
    meta = build_authority(quote, token, base_url=base_url)
    resume_url = build_resume_url(token, DOCUMENT_TYPES[DocType.QUOTE].default_resume_step, base_url=base_url)
    links = EmailLinks(
        review_url=build_review_url("/quoteReview", token, base_url=base_url),
        print_url=build_print_url(DocType.QUOTE, token, base_url=base_url),
        verify_url=build_verification_url(DocType.QUOTE, token, base_url=base_url),
        resume_url=resume_url,
    )
    return EmailRequest(to=to, meta=meta.to_dict(), links=links, context=_customer_context(quote))


def build_agreement_email_request(
    context: AgreementContext,
    resume_step: Optional[str] = None,
    *,
    base_url: Optional[str] = None,
) -> Optional[EmailRequest]:
    """Email request for an agreement, or ``None`` without a valid recipient.

    The recipient is the address captured at acceptance, else the quote
    contact. The resume link continues from the bound quote.
    """
    quote = context.quote
    candidate = (context.acceptance.email_to if context.acceptance else None) or quote.contact or ""
    to = candidate.strip()
    if not is_valid_email(to):
        return None

    token = build_agreement_token(context, agreement_hash(context))
    meta = build_authority(context, token, base_url=base_url)
    step = resume_step or agreement_resume_step(context)
    resume_url = build_resume_url(create_resume_token(quote), step, base_url=base_url)
    meta_dict = meta.to_dict()
    meta_dict.update(resume_url=resume_url, resume_url_display=shorten_middle(resume_url))
    links = EmailLinks(
        review_url=build_review_url("/agreementReview", token, base_url=base_url),
        print_url=build_print_url(DocType.AGREEMENT, token, base_url=base_url),
        verify_url=build_verification_url(DocType.AGREEMENT, token, base_url=base_url),
        resume_url=resume_url,
    )
    return EmailRequest(to=to, meta=meta_dict, links=links, context=_customer_context(quote))


def send_document_email(sender: MailSender, request: EmailRequest) -> EmailSendResponse:
    """Hand a request to the sender and log the outcome."""
    response = sender.send(request)
    doc_type = request.meta.get("doc_type", "")
    if response.ok:
        logger.info(
            "Document email sent",
            operation="send_document_email",
            doc_type=doc_type,
            provider=response.provider,
            message_id=response.id,
        )
    else:
        logger.warning(
            "Document email failed",
            operation="send_document_email",
            doc_type=doc_type,
            provider=response.provider,
            error=response.error,
        )
    return response
