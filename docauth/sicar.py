"""Installation acceptance certificate (SICAR): data model and hash codec.

The certificate is an immutable record; ``docauth.lifecycle`` produces new
records for every change. The hash commits to the lifecycle position, the
stage-transition history, the bindings to quote/agreement/job, the installer
roster, every device (photos counted, not hashed) and the acceptance.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from docauth.audit import AuditEntry, lifecycle_entries
from docauth.config import get_config
from docauth.core import canonical_sha256, compact_dict

DOC_TYPE = "SICAR"


class LifecycleStage(Enum):
    LEAD = "lead"
    QUOTE = "quote"
    AGREEMENT = "agreement"
    PREINSTALL = "preinstall"
    INSTALLATION = "installation"
    POSTINSTALL = "postinstall"
    ACCEPTANCE = "acceptance"

    @property
    def index(self) -> int:
        return LIFECYCLE_ORDER.index(self)


LIFECYCLE_ORDER: Tuple[LifecycleStage, ...] = tuple(LifecycleStage)


class Role(Enum):
    CUSTOMER = "customer"
    SALES = "sales"
    QUOTING_SYSTEM = "quoting-system"
    CONTRACT_SYSTEM = "contract-system"
    OPERATIONS = "operations"
    INSTALLER = "installer"
    SYSTEM = "system"


class HealthStatus(Enum):
    UNKNOWN = "unknown"
    OK = "ok"
    FAIL = "fail"


HEALTH_CHANNELS: Tuple[str, ...] = ("power", "connectivity", "battery", "functional")


@dataclass(frozen=True)
class DeviceHealth:
    power: HealthStatus = HealthStatus.UNKNOWN
    connectivity: HealthStatus = HealthStatus.UNKNOWN
    battery: HealthStatus = HealthStatus.UNKNOWN
    functional: HealthStatus = HealthStatus.UNKNOWN
    last_checked_at: Optional[str] = None
    manual_override: bool = False
    override_justification: Optional[str] = None

    def __post_init__(self):
        for channel in HEALTH_CHANNELS:
            object.__setattr__(self, channel, HealthStatus(getattr(self, channel)))

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {c: getattr(self, c).value for c in HEALTH_CHANNELS}
        d.update(compact_dict({
            "last_checked_at": self.last_checked_at,
            "override_justification": self.override_justification,
        }))
        d["manual_override"] = self.manual_override
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DeviceHealth":
        return cls(
            **{c: HealthStatus(d.get(c, "unknown")) for c in HEALTH_CHANNELS},
            last_checked_at=d.get("last_checked_at"),
            manual_override=bool(d.get("manual_override", False)),
            override_justification=d.get("override_justification"),
        )


@dataclass(frozen=True)
class DeviceRecord:
    id: str
    system_name: str
    manufacturer: str = ""
    make: str = ""
    model: str = ""
    part_number: str = ""
    serial_number: Optional[str] = None
    planned_location: str = ""
    installed_location: str = ""
    purpose: str = ""
    photos: Tuple[str, ...] = ()
    health: DeviceHealth = field(default_factory=DeviceHealth)
    installer_attestation: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "photos", tuple(self.photos))

    def to_dict(self) -> Dict[str, Any]:
        d = compact_dict({
            "id": self.id,
            "system_name": self.system_name,
            "manufacturer": self.manufacturer,
            "make": self.make,
            "model": self.model,
            "part_number": self.part_number,
            "serial_number": self.serial_number,
            "planned_location": self.planned_location,
            "installed_location": self.installed_location,
            "purpose": self.purpose,
            "installer_attestation": self.installer_attestation,
        })
        d["photos"] = list(self.photos)
        d["health"] = self.health.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "DeviceRecord":
        return cls(
            id=d["id"],
            system_name=d["system_name"],
            manufacturer=d.get("manufacturer", ""),
            make=d.get("make", ""),
            model=d.get("model", ""),
            part_number=d.get("part_number", ""),
            serial_number=d.get("serial_number"),
            planned_location=d.get("planned_location", ""),
            installed_location=d.get("installed_location", ""),
            purpose=d.get("purpose", ""),
            photos=tuple(d.get("photos") or ()),
            health=DeviceHealth.from_dict(d.get("health") or {}),
            installer_attestation=d.get("installer_attestation"),
        )


@dataclass(frozen=True)
class AcceptanceSnapshot:
    customer_name: str
    signature: str
    signed_at: str
    representative_title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return compact_dict({
            "customer_name": self.customer_name,
            "signature": self.signature,
            "signed_at": self.signed_at,
            "representative_title": self.representative_title,
        })

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "AcceptanceSnapshot":
        return cls(
            customer_name=d["customer_name"],
            signature=d["signature"],
            signed_at=d["signed_at"],
            representative_title=d.get("representative_title"),
        )


@dataclass(frozen=True)
class CustomerInfo:
    customer_name: str = ""
    contact_email: str = ""
    contact_phone: str = ""
    service_street1: str = ""
    service_street2: str = ""
    service_city: str = ""
    service_state: str = ""
    service_zip: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CustomerInfo":
        return cls(**{name: str(d.get(name) or "") for name in cls.__dataclass_fields__})


@dataclass(frozen=True)
class Certificate:
    lifecycle_stage: LifecycleStage = LifecycleStage.LEAD
    immutable: bool = False
    customer: CustomerInfo = field(default_factory=CustomerInfo)
    quote_id: str = ""
    agreement_id: str = ""
    installation_job_id: str = ""
    installers: Tuple[str, ...] = ()
    devices: Tuple[DeviceRecord, ...] = ()
    acceptance: Optional[AcceptanceSnapshot] = None
    audit_log: Tuple[AuditEntry, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "lifecycle_stage", LifecycleStage(self.lifecycle_stage))
        object.__setattr__(self, "installers", tuple(self.installers))
        object.__setattr__(self, "devices", tuple(self.devices))
        object.__setattr__(self, "audit_log", tuple(self.audit_log))

    def device(self, device_id: str) -> Optional[DeviceRecord]:
        for d in self.devices:
            if d.id == device_id:
                return d
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lifecycle_stage": self.lifecycle_stage.value,
            "immutable": self.immutable,
            "customer": self.customer.to_dict(),
            "quote_id": self.quote_id,
            "agreement_id": self.agreement_id,
            "installation_job_id": self.installation_job_id,
            "installers": list(self.installers),
            "devices": [d.to_dict() for d in self.devices],
            "acceptance": self.acceptance.to_dict() if self.acceptance else None,
            "audit_log": [e.to_dict() for e in self.audit_log],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Certificate":
        acceptance = d.get("acceptance")
        return cls(
            lifecycle_stage=LifecycleStage(d.get("lifecycle_stage", "lead")),
            immutable=bool(d.get("immutable", False)),
            customer=CustomerInfo.from_dict(d.get("customer") or {}),
            quote_id=d.get("quote_id") or "",
            agreement_id=d.get("agreement_id") or "",
            installation_job_id=d.get("installation_job_id") or "",
            installers=tuple(d.get("installers") or ()),
            devices=tuple(DeviceRecord.from_dict(x) for x in d.get("devices") or ()),
            acceptance=AcceptanceSnapshot.from_dict(acceptance) if acceptance else None,
            audit_log=tuple(AuditEntry.from_dict(x) for x in d.get("audit_log") or ()),
        )


def build_sicar_reference(certificate: Certificate) -> str:
    return certificate.quote_id or certificate.agreement_id or DOC_TYPE


def _device_payload(device: DeviceRecord) -> Dict[str, Any]:
    health = device.health
    return {
        "system_name": device.system_name or "",
        "manufacturer": device.manufacturer or "",
        "make": device.make or "",
        "model": device.model or "",
        "part_number": device.part_number or "",
        "serial_number": device.serial_number or "",
        "planned_location": device.planned_location or "",
        "installed_location": device.installed_location or "",
        "purpose": device.purpose or "",
        "photos": len(device.photos),
        "health": {
            "power": health.power,
            "connectivity": health.connectivity,
            "battery": health.battery,
            "functional": health.functional,
            "last_checked_at": health.last_checked_at or "",
            "manual_override": health.manual_override,
            "override_justification": health.override_justification or "",
        },
        "installer_attestation": device.installer_attestation or "",
    }


def build_hash_payload(certificate: Certificate) -> Dict[str, Any]:
    acceptance = certificate.acceptance
    devices = sorted(certificate.devices, key=lambda d: (d.system_name or "", d.model or ""))
    return {
        "doc_type": DOC_TYPE,
        "version": get_config().documents.sicar_doc_version.get(),
        "lifecycle_stage": certificate.lifecycle_stage,
        "immutable": certificate.immutable,
        "stages": [
            {"actor": e.actor, "action": e.action, "at": e.timestamp}
            for e in lifecycle_entries(certificate.audit_log)
        ],
        "bindings": {
            "quote_id": certificate.quote_id,
            "agreement_id": certificate.agreement_id,
            "installation_job_id": certificate.installation_job_id,
        },
        "installers": sorted(certificate.installers),
        "devices": [_device_payload(d) for d in devices],
        "acceptance": {
            "customer_name": acceptance.customer_name,
            "signature": acceptance.signature,
            "signed_at": acceptance.signed_at,
            "representative_title": acceptance.representative_title or "",
        } if acceptance else None,
        "locked_at": acceptance.signed_at if acceptance else "",
        # Order matters here; a list of strings would be sorted by the canonicalizer.
        "lifecycle_order": [{"index": s.index, "stage": s.value} for s in LIFECYCLE_ORDER],
    }


def compute_hash(certificate: Certificate) -> str:
    return canonical_sha256(build_hash_payload(certificate))