"""Key-value persistence for funnel state and certificates.

The engine itself never touches storage; hosts pass records in and out
through a ``FlowStore``. Two stores ship: an in-memory one and a directory of
canonical JSON files, one per key.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

from docauth.agreement import AgreementAcceptance
from docauth.core import canonical_json_bytes
from docauth.lifecycle import create_certificate
from docauth.observability import Layer, get_logger
from docauth.quote import QuoteContext
from docauth.sicar import Certificate

logger = get_logger(__name__, Layer.STORE)

CERTIFICATE_KEY = "kaecSicarCertificate"
FLOW_KEY = "kaecRetailFlow"

FLOW_STEPS = ("learn", "select", "quote", "agreement", "payment", "schedule")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class FlowStore(ABC):
    """Abstract key-value store of JSON-compatible values."""

    @abstractmethod
    def load(self, key: str, default: Any = None) -> Any:
        """Stored value, or ``default`` when the key is absent."""
        pass

    @abstractmethod
    def save(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass


class InMemoryFlowStore(FlowStore):
    """Thread-safe dict-backed store. Values are deep-copied through JSON."""

    def __init__(self):
        self._data: Dict[str, bytes] = {}
        self._lock = threading.RLock()

    def load(self, key: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._data.get(key)
        return default if raw is None else json.loads(raw)

    def save(self, key: str, value: Any) -> None:
        raw = canonical_json_bytes(value)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None


class JsonFileFlowStore(FlowStore):
    """One ``<key>.json`` file per key under ``root``, written atomically."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key or ""):
            raise ValueError(f"Invalid store key: {key!r}")
        return self.root / f"{key}.json"

    def load(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return default
            return json.loads(path.read_text(encoding="utf-8"))

    def save(self, key: str, value: Any) -> None:
        path = self._path(key)
        raw = canonical_json_bytes(value)
        with self._lock:
            fd, tmp = tempfile.mkstemp(dir=str(self.root), prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(raw)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise

    def delete(self, key: str) -> bool:
        path = self._path(key)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
            return True


# -----------------------------------------------------------------------------
# Certificate
# -----------------------------------------------------------------------------


def load_certificate(store: FlowStore) -> Certificate:
    """Stored certificate, or a fresh one when absent or unreadable."""
    try:
        raw = store.load(CERTIFICATE_KEY)
    except ValueError as ex:
        logger.warning("Stored certificate is not valid JSON", operation="load_certificate", error=str(ex))
        return create_certificate()
    if raw is None:
        return create_certificate()
    try:
        return Certificate.from_dict(raw)
    except (KeyError, TypeError, ValueError, AttributeError) as ex:
        logger.warning("Stored certificate is corrupt", operation="load_certificate", error=str(ex))
        return create_certificate()


def save_certificate(store: FlowStore, certificate: Certificate) -> Certificate:
    store.save(CERTIFICATE_KEY, certificate.to_dict())
    return certificate


def reset_certificate(store: FlowStore) -> Certificate:
    return save_certificate(store, create_certificate())


# -----------------------------------------------------------------------------
# Retail funnel
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class RetailFlowState:
    quote: Optional[QuoteContext] = None
    agreement_acceptance: Optional[AgreementAcceptance] = None
    current_step: Optional[str] = None

    def __post_init__(self):
        if self.current_step is not None and self.current_step not in FLOW_STEPS:
            raise ValueError(f"Unknown flow step: {self.current_step!r}")

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {}
        if self.quote is not None:
            d["quote"] = self.quote.to_dict()
        if self.agreement_acceptance is not None:
            d["agreement_acceptance"] = self.agreement_acceptance.to_dict()
        if self.current_step is not None:
            d["current_step"] = self.current_step
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RetailFlowState":
        quote = d.get("quote")
        acceptance = d.get("agreement_acceptance")
        return cls(
            quote=QuoteContext.from_dict(quote) if quote else None,
            agreement_acceptance=AgreementAcceptance.from_dict(acceptance) if acceptance else None,
            current_step=d.get("current_step"),
        )


def load_retail_flow(store: FlowStore) -> RetailFlowState:
    """Stored funnel state, or an empty one when absent or unreadable."""
    try:
        raw = store.load(FLOW_KEY)
        return RetailFlowState.from_dict(raw) if raw else RetailFlowState()
    except (KeyError, TypeError, ValueError, AttributeError) as ex:
        logger.warning("Stored retail flow is corrupt", operation="load_retail_flow", error=str(ex))
        return RetailFlowState()


def save_retail_flow(store: FlowStore, state: RetailFlowState) -> RetailFlowState:
    store.save(FLOW_KEY, state.to_dict())
    return state


def update_retail_flow(
    store: FlowStore,
    *,
    quote: Optional[QuoteContext] = None,
    agreement_acceptance: Optional[AgreementAcceptance] = None,
    current_step: Optional[str] = None,
) -> RetailFlowState:
    """Merge the given parts into the stored state; omitted parts are kept."""
    current = load_retail_flow(store)
    changes: Dict[str, Any] = {}
    if quote is not None:
        changes["quote"] = quote
    if agreement_acceptance is not None:
        changes["agreement_acceptance"] = agreement_acceptance
    if current_step is not None:
        changes["current_step"] = current_step
    return save_retail_flow(store, replace(current, **changes))
