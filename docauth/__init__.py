"""docauth: Document Authority & Certification Engine, v0.1.0

Turns retail quotes, service agreements and installation acceptance records
into canonical, hash-stamped documents that carry their own provenance.

Architecture:
    docauth/
    ├── __init__.py      # Package entry, version, public API
    ├── core.py          # Primitives: canonical JSON, sha256, base64url
    ├── catalog.py       # Packages, add-ons, hardware and feature rollups
    ├── quote.py         # Quote codec and references
    ├── agreement.py     # Agreement codec, acceptance and revisions
    ├── sicar.py         # Installation certificate model and codec
    ├── tokens.py        # Portable resume / agreement / SICAR tokens
    ├── schema.py        # JSON Schema validation of token payloads
    ├── authority.py     # Authority metadata and document links
    ├── verify.py        # Token verification and resume
    ├── lifecycle.py     # Certificate lifecycle and role gating
    ├── audit.py         # Bounded, newest-first audit log
    ├── mail.py          # Document email requests and sender contract
    ├── store.py         # Funnel and certificate persistence
    ├── config.py        # Configuration management
    ├── observability.py # Structured logging
    └── cli.py           # Command-line interface

A document's hash is the SHA-256 of the canonical JSON of its hash payload.
Tokens carry enough of the document to rebuild that payload, so anyone
holding a token can recompute the hash and compare it with the claimed one.
"""

__version__ = "0.1.0"

from docauth.core import (
    HASH_ALGORITHM,
    CanonicalizationError,
    DocType,
    canonical_json_bytes,
    canonical_sha256,
    canonicalize,
    sha256_bytes,
)
from docauth.catalog import CatalogError, QuotePricing, price_quote
from docauth.quote import QuoteContext, build_quote, supersede_quote
from docauth.agreement import (
    AgreementAcceptance,
    AgreementContext,
    accept_agreement,
    create_agreement,
    revise_agreement,
)
from docauth.sicar import Certificate, HealthStatus, LifecycleStage, Role
from docauth.tokens import decode_token, encode_token
from docauth.authority import AuthorityMeta, build_authority
from docauth.verify import VerificationResult, resume_from_token, verify_token, verify_url
from docauth.lifecycle import TransitionResult, create_certificate

__all__ = [
    "__version__",
    "HASH_ALGORITHM",
    "CanonicalizationError",
    "DocType",
    "canonical_json_bytes",
    "canonical_sha256",
    "canonicalize",
    "sha256_bytes",
    "CatalogError",
    "QuotePricing",
    "price_quote",
    "QuoteContext",
    "build_quote",
    "supersede_quote",
    "AgreementAcceptance",
    "AgreementContext",
    "accept_agreement",
    "create_agreement",
    "revise_agreement",
    "Certificate",
    "HealthStatus",
    "LifecycleStage",
    "Role",
    "decode_token",
    "encode_token",
    "AuthorityMeta",
    "build_authority",
    "VerificationResult",
    "resume_from_token",
    "verify_token",
    "verify_url",
    "TransitionResult",
    "create_certificate",
]
