#!/usr/bin/env python3
"""docauth command line.

Hash, tokenize, verify and describe quotes, agreements and SICAR
certificates from JSON or YAML files.

Usage:
    python -m docauth hash --doc quote quote.json
    python -m docauth token encode --doc agreement agreement.yaml
    python -m docauth token decode --doc sicar <token>
    python -m docauth verify --url "https://kaec.local/verify?doc=QUOTE&t=..."
    python -m docauth authority --doc quote quote.json --format yaml
    python -m docauth config show
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
from typing import Any, Callable, Dict, List, Optional

import yaml

from docauth import __version__, agreement, quote as quote_codec, sicar
from docauth.agreement import AgreementContext
from docauth.authority import build_authority
from docauth.catalog import CatalogError
from docauth.config import ConfigError, get_config_manager
from docauth.core import DocType, load_json, load_yaml
from docauth.observability import Layer, generate_correlation_id, get_logger, set_correlation_id
from docauth.quote import QuoteContext
from docauth.sicar import Certificate
from docauth.tokens import build_agreement_token, build_sicar_token, create_resume_token, parse_document_token
from docauth.verify import verify_token, verify_url

logger = get_logger(__name__, Layer.CLI)

DOC_CHOICES = [d.value.lower() for d in DocType]

_LOADERS: Dict[DocType, Callable[[Dict[str, Any]], Any]] = {
    DocType.QUOTE: QuoteContext.from_dict,
    DocType.AGREEMENT: AgreementContext.from_dict,
    DocType.SICAR: Certificate.from_dict,
}

_HASHERS: Dict[DocType, Callable[[Any], str]] = {
    DocType.QUOTE: quote_codec.compute_hash,
    DocType.AGREEMENT: agreement.compute_hash,
    DocType.SICAR: sicar.compute_hash,
}

_TOKENIZERS: Dict[DocType, Callable[[Any], str]] = {
    DocType.QUOTE: create_resume_token,
    DocType.AGREEMENT: build_agreement_token,
    DocType.SICAR: build_sicar_token,
}


def _doc_type(value: str) -> DocType:
    return DocType(value.upper())


def _read_document_file(path_arg: str) -> Dict[str, Any]:
    path = pathlib.Path(path_arg)
    if path.suffix.lower() in (".yaml", ".yml"):
        data = load_yaml(path)
    else:
        data = load_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def _load_document(args: argparse.Namespace) -> Optional[Any]:
    """Document parsed from ``args.file``; prints an error and returns None on failure."""
    kind = _doc_type(args.doc)
    try:
        return _LOADERS[kind](_read_document_file(args.file))
    except FileNotFoundError:
        print(f"ERROR: file not found: {args.file}", file=sys.stderr)
    except (CatalogError, KeyError, TypeError, ValueError, yaml.YAMLError) as ex:
        print(f"ERROR: cannot read {kind.value.lower()} from {args.file}: {ex}", file=sys.stderr)
    return None


def _document_error(args: argparse.Namespace, ex: Exception) -> int:
    print(f"ERROR: cannot process {args.doc} from {args.file}: {ex}", file=sys.stderr)
    return 2


def _dump(obj: Any, fmt: str = "json") -> str:
    if fmt == "yaml":
        return yaml.safe_dump(obj, sort_keys=False, allow_unicode=True).rstrip("\n")
    return json.dumps(obj, indent=2, ensure_ascii=False)


def cmd_hash(args: argparse.Namespace) -> int:
    """Print the document hash of a quote, agreement or certificate file."""
    document = _load_document(args)
    if document is None:
        return 2
    try:
        digest = _HASHERS[_doc_type(args.doc)](document)
    except (CatalogError, KeyError, TypeError, ValueError) as ex:
        return _document_error(args, ex)
    print(digest)
    return 0


def cmd_token_encode(args: argparse.Namespace) -> int:
    document = _load_document(args)
    if document is None:
        return 2
    try:
        token = _TOKENIZERS[_doc_type(args.doc)](document)
    except (CatalogError, KeyError, TypeError, ValueError) as ex:
        return _document_error(args, ex)
    print(token)
    return 0


def cmd_token_decode(args: argparse.Namespace) -> int:
    payload = parse_document_token(_doc_type(args.doc), args.token)
    if payload is None:
        print(f"ERROR: not a valid {args.doc} token", file=sys.stderr)
        return 2
    print(_dump(payload))
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    """Exit 0 when the token verifies, 2 otherwise."""
    if args.url:
        result = verify_url(args.url)
    else:
        if not args.doc or not args.token:
            print("ERROR: verify needs --url, or --doc with a token", file=sys.stderr)
            return 2
        result = verify_token(_doc_type(args.doc).value, args.token)

    if args.json:
        print(_dump(result.to_dict()))
    elif result.verified:
        print(f"VERIFIED {result.doc_type.value} {result.computed_hash}")
    else:
        print(f"INVALID: {result.reason}")
        if result.expected_hash:
            print(f"  expected: {result.expected_hash}")
            print(f"  computed: {result.computed_hash}")
    return 0 if result.verified else 2


def cmd_authority(args: argparse.Namespace) -> int:
    document = _load_document(args)
    if document is None:
        return 2
    try:
        meta = build_authority(document, base_url=args.base_url or None)
    except (CatalogError, KeyError, TypeError, ValueError) as ex:
        return _document_error(args, ex)
    print(_dump(meta.to_dict(), args.format))
    return 0


def cmd_config_show(args: argparse.Namespace) -> int:
    manager = get_config_manager()
    if args.format == "json":
        print(_dump(manager.config.to_dict()))
    else:
        print(manager.config.to_yaml().rstrip("\n"))
    return 0


def cmd_config_validate(args: argparse.Namespace) -> int:
    errors = get_config_manager().validate()
    if errors:
        print("CONFIG FAIL")
        for e in errors:
            print("  -", e)
        return 2
    print("OK: configuration is valid")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="docauth", description="Document authority and certification engine")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--config", default="", help="YAML configuration file to load before running")
    sub = ap.add_subparsers(dest="cmd", required=True)

    h = sub.add_parser("hash", help="Print a document hash")
    h.add_argument("--doc", required=True, choices=DOC_CHOICES)
    h.add_argument("file", help="JSON or YAML document")
    h.set_defaults(func=cmd_hash)

    t = sub.add_parser("token", help="Encode or decode document tokens")
    t_sub = t.add_subparsers(dest="token_cmd", required=True)

    te = t_sub.add_parser("encode", help="Mint a token for a document file")
    te.add_argument("--doc", required=True, choices=DOC_CHOICES)
    te.add_argument("file", help="JSON or YAML document")
    te.set_defaults(func=cmd_token_encode)

    td = t_sub.add_parser("decode", help="Print the payload of a token")
    td.add_argument("--doc", required=True, choices=DOC_CHOICES)
    td.add_argument("token")
    td.set_defaults(func=cmd_token_decode)

    v = sub.add_parser("verify", help="Verify a token or verification URL")
    v.add_argument("--doc", choices=DOC_CHOICES)
    v.add_argument("--url", default="", help="Verification URL carrying doc and t parameters")
    v.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    v.add_argument("token", nargs="?", default="")
    v.set_defaults(func=cmd_verify)

    a = sub.add_parser("authority", help="Print authority metadata for a document")
    a.add_argument("--doc", required=True, choices=DOC_CHOICES)
    a.add_argument("--format", choices=["json", "yaml"], default="json")
    a.add_argument("--base-url", default="", help="Link origin (default: links.base_url)")
    a.add_argument("file", help="JSON or YAML document")
    a.set_defaults(func=cmd_authority)

    c = sub.add_parser("config", help="Configuration management")
    c_sub = c.add_subparsers(dest="config_cmd", required=True)

    cs = c_sub.add_parser("show", help="Show all configuration")
    cs.add_argument("--format", choices=["json", "yaml"], default="yaml")
    cs.set_defaults(func=cmd_config_show)

    cv = c_sub.add_parser("validate", help="Validate configuration")
    cv.set_defaults(func=cmd_config_validate)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    set_correlation_id(generate_correlation_id())

    if args.config:
        try:
            get_config_manager().load_from_file(args.config)
        except ConfigError as ex:
            print(f"ERROR: {ex}", file=sys.stderr)
            return 2

    logger.debug("Running command", operation=args.cmd)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
