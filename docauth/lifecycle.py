"""Certificate lifecycle state machine.

Stages progress strictly in order:

    lead -> quote -> agreement -> preinstall -> installation -> postinstall -> acceptance

Every operation takes a certificate and an acting role and returns a
``TransitionResult``. Authorization and ordering failures never raise: the
result carries the unchanged certificate and a human-readable reason.
Successful operations return a new certificate with one audit entry prepended.
Customer acceptance locks the record; afterwards every operation is rejected.

Programmer errors (unknown role or stage strings, unknown field names or
device attributes) raise ValueError.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from docauth import audit
from docauth.config import get_config
from docauth.core import now_rfc3339
from docauth.observability import Layer, get_logger
from docauth.sicar import (
    HEALTH_CHANNELS,
    LIFECYCLE_ORDER,
    AcceptanceSnapshot,
    Certificate,
    CustomerInfo,
    DeviceHealth,
    DeviceRecord,
    HealthStatus,
    LifecycleStage,
    Role,
)

logger = get_logger(__name__, Layer.LIFECYCLE)

RoleLike = Union[Role, str]
StageLike = Union[LifecycleStage, str]

ERR_LOCKED = "Certificate is locked."
ERR_UNKNOWN_DEVICE = "Unknown device."
ERR_STAGE_ORDER = "Stages must progress in order and cannot be skipped."
ERR_FIELD_LOCKED = "Field is locked for this role or lifecycle stage."
ERR_INSTALLERS = "Installer assignments are only editable by Operations during pre-install."
ERR_INSTALLER_NAME = "Installer name is required."
ERR_ADD_DEVICE = "Devices can only be created by the Installer of Record during installation."
ERR_UPDATE_DEVICE = "Device updates require installer/system role during installation or post-install."
ERR_PHOTO = "Photos can only be added by the installer during installation."
ERR_HEALTH = "Health checks require installer or system role during install/post-install."
ERR_TELEMETRY = "Telemetry pulls require the system role during install/post-install."
ERR_OVERRIDE_JUSTIFICATION = "Override justification is required."
ERR_ACCEPTANCE = "Acceptance requires customer role during the acceptance stage."
ERR_ACCEPTANCE_DEVICES = "Acceptance requires at least one installed device."
ERR_ACCEPTANCE_SNAPSHOT = "Acceptance requires the customer name and signature."

_DEVICE_STAGES = (LifecycleStage.INSTALLATION, LifecycleStage.POSTINSTALL)
_DEVICE_FIELDS = (
    "system_name",
    "manufacturer",
    "make",
    "model",
    "part_number",
    "serial_number",
    "planned_location",
    "installed_location",
    "purpose",
    "installer_attestation",
)
_HEALTH_FIELDS = HEALTH_CHANNELS + ("last_checked_at", "manual_override", "override_justification")
_OPTIONAL_DEVICE_FIELDS = ("serial_number", "installer_attestation")


@dataclass(frozen=True)
class FieldOwnership:
    role: Role
    stage: LifecycleStage


FIELD_OWNERSHIP: Dict[str, FieldOwnership] = {
    "customer_name": FieldOwnership(Role.CUSTOMER, LifecycleStage.LEAD),
    "contact_email": FieldOwnership(Role.CUSTOMER, LifecycleStage.LEAD),
    "contact_phone": FieldOwnership(Role.CUSTOMER, LifecycleStage.LEAD),
    "service_street1": FieldOwnership(Role.CUSTOMER, LifecycleStage.LEAD),
    "service_street2": FieldOwnership(Role.CUSTOMER, LifecycleStage.LEAD),
    "service_city": FieldOwnership(Role.CUSTOMER, LifecycleStage.LEAD),
    "service_state": FieldOwnership(Role.CUSTOMER, LifecycleStage.LEAD),
    "service_zip": FieldOwnership(Role.CUSTOMER, LifecycleStage.LEAD),
    "quote_id": FieldOwnership(Role.QUOTING_SYSTEM, LifecycleStage.QUOTE),
    "agreement_id": FieldOwnership(Role.CONTRACT_SYSTEM, LifecycleStage.AGREEMENT),
    "installation_job_id": FieldOwnership(Role.OPERATIONS, LifecycleStage.PREINSTALL),
}


@dataclass(frozen=True)
class TransitionResult:
    certificate: Certificate
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def create_certificate() -> Certificate:
    """Fresh certificate at ``lead`` with the default installer roster."""
    return Certificate(installers=(get_config().lifecycle.default_installer.get(),))


def _reject(certificate: Certificate, operation: str, actor: Role, reason: str) -> TransitionResult:
    logger.info(
        "Lifecycle operation rejected",
        operation=operation,
        actor=actor.value,
        stage=certificate.lifecycle_stage.value,
        reason=reason,
    )
    return TransitionResult(certificate, reason)


def _commit(
    certificate: Certificate,
    actor: Role,
    action: str,
    details: Optional[str],
    now: Optional[str],
    **changes: Any,
) -> TransitionResult:
    log = audit.append_audit(certificate.audit_log, actor, action, details, timestamp=now)
    return TransitionResult(replace(certificate, audit_log=log, **changes))


def _replace_device(certificate: Certificate, device: DeviceRecord) -> Tuple[DeviceRecord, ...]:
    return tuple(device if d.id == device.id else d for d in certificate.devices)


def _patched_health(health: DeviceHealth, patch: Mapping[str, Any]) -> DeviceHealth:
    unknown = set(patch) - set(_HEALTH_FIELDS)
    if unknown:
        raise ValueError(f"Unknown health fields: {sorted(unknown)}")
    values = dict(patch)
    for channel in HEALTH_CHANNELS:
        if channel in values:
            values[channel] = HealthStatus(values[channel])
    return replace(health, **values)


# -----------------------------------------------------------------------------
# Stages
# -----------------------------------------------------------------------------


def can_advance_stage(certificate: Certificate, next_stage: StageLike) -> bool:
    if certificate.immutable:
        return False
    return LifecycleStage(next_stage).index == certificate.lifecycle_stage.index + 1


def advance_stage(
    certificate: Certificate,
    next_stage: StageLike,
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    actor = Role(actor)
    next_stage = LifecycleStage(next_stage)
    if certificate.immutable:
        return _reject(certificate, "advance_stage", actor, ERR_LOCKED)
    if not can_advance_stage(certificate, next_stage):
        return _reject(certificate, "advance_stage", actor, ERR_STAGE_ORDER)
    return _commit(
        certificate,
        actor,
        audit.ACTION_ADVANCE_STAGE,
        f"Moved to {next_stage.value}",
        now,
        lifecycle_stage=next_stage,
    )


# -----------------------------------------------------------------------------
# Owned fields
# -----------------------------------------------------------------------------


def is_field_editable(certificate: Certificate, field_name: str, actor: RoleLike) -> bool:
    """True iff the record is open, ``actor`` owns the field and its home stage has not passed."""
    ownership = FIELD_OWNERSHIP.get(field_name)
    if ownership is None:
        raise ValueError(f"Unknown certificate field: {field_name!r}")
    if certificate.immutable or ownership.role is not Role(actor):
        return False
    return certificate.lifecycle_stage.index <= ownership.stage.index


def update_field(
    certificate: Certificate,
    field_name: str,
    value: str,
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    actor = Role(actor)
    if certificate.immutable:
        return _reject(certificate, "update_field", actor, ERR_LOCKED)
    if not is_field_editable(certificate, field_name, actor):
        return _reject(certificate, "update_field", actor, ERR_FIELD_LOCKED)

    if field_name in CustomerInfo.__dataclass_fields__:
        changes: Dict[str, Any] = {"customer": replace(certificate.customer, **{field_name: value})}
    else:
        changes = {field_name: value}
    return _commit(certificate, actor, audit.ACTION_UPDATE_FIELD, f"{field_name} set", now, **changes)


# -----------------------------------------------------------------------------
# Installers and devices
# -----------------------------------------------------------------------------


def add_installer(
    certificate: Certificate,
    name: str,
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    actor = Role(actor)
    if certificate.immutable:
        return _reject(certificate, "add_installer", actor, ERR_LOCKED)
    if certificate.lifecycle_stage is not LifecycleStage.PREINSTALL or actor is not Role.OPERATIONS:
        return _reject(certificate, "add_installer", actor, ERR_INSTALLERS)
    name = (name or "").strip()
    if not name:
        return _reject(certificate, "add_installer", actor, ERR_INSTALLER_NAME)
    return _commit(
        certificate,
        actor,
        audit.ACTION_ADD_INSTALLER,
        name,
        now,
        installers=certificate.installers + (name,),
    )


def add_device(
    certificate: Certificate,
    attributes: Mapping[str, Any],
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    """Register a device. ``attributes`` holds device attributes plus optional
    ``photos`` and ``health``; the id is assigned here."""
    actor = Role(actor)
    if certificate.immutable:
        return _reject(certificate, "add_device", actor, ERR_LOCKED)
    if certificate.lifecycle_stage is not LifecycleStage.INSTALLATION or actor is not Role.INSTALLER:
        return _reject(certificate, "add_device", actor, ERR_ADD_DEVICE)

    fields = _device_attributes(attributes, ("photos", "health"))
    if not str(fields.get("system_name") or "").strip():
        raise ValueError("A device requires a system_name")

    device = DeviceRecord(
        id=str(uuid.uuid4()),
        photos=tuple(attributes.get("photos") or ()),
        health=_patched_health(DeviceHealth(), attributes.get("health") or {}),
        **fields,
    )
    return _commit(
        certificate,
        actor,
        audit.ACTION_ADD_DEVICE,
        device.system_name,
        now,
        devices=certificate.devices + (device,),
    )


def _device_attributes(values: Mapping[str, Any], extra: Tuple[str, ...]) -> Dict[str, Any]:
    """Device attribute changes from ``values``; raises ValueError on unknown
    names or non-string values."""
    unknown = set(values) - set(_DEVICE_FIELDS) - set(extra)
    if unknown:
        raise ValueError(f"Unknown device fields: {sorted(unknown)}")
    fields = {k: values[k] for k in _DEVICE_FIELDS if k in values}
    for name, value in fields.items():
        if value is None and name in _OPTIONAL_DEVICE_FIELDS:
            continue
        if not isinstance(value, str):
            raise ValueError(f"Device field {name} must be a string, got {type(value).__name__}")
    return fields


def _device_gate(
    certificate: Certificate,
    device_id: str,
    operation: str,
    actor: Role,
    allowed: bool,
    reason: str,
) -> Union[DeviceRecord, TransitionResult]:
    if certificate.immutable:
        return _reject(certificate, operation, actor, ERR_LOCKED)
    if not allowed:
        return _reject(certificate, operation, actor, reason)
    device = certificate.device(device_id)
    if device is None:
        return _reject(certificate, operation, actor, ERR_UNKNOWN_DEVICE)
    return device


def update_device(
    certificate: Certificate,
    device_id: str,
    patch: Mapping[str, Any],
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    actor = Role(actor)
    allowed = certificate.lifecycle_stage in _DEVICE_STAGES and actor in (Role.INSTALLER, Role.SYSTEM)
    gate = _device_gate(certificate, device_id, "update_device", actor, allowed, ERR_UPDATE_DEVICE)
    if isinstance(gate, TransitionResult):
        return gate

    changes = _device_attributes(patch, ("health",))
    device = replace(gate, health=_patched_health(gate.health, patch.get("health") or {}), **changes)
    return _commit(
        certificate,
        actor,
        audit.ACTION_UPDATE_DEVICE,
        device_id,
        now,
        devices=_replace_device(certificate, device),
    )


def append_photo(
    certificate: Certificate,
    device_id: str,
    photo: str,
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    actor = Role(actor)
    allowed = certificate.lifecycle_stage is LifecycleStage.INSTALLATION and actor is Role.INSTALLER
    gate = _device_gate(certificate, device_id, "append_photo", actor, allowed, ERR_PHOTO)
    if isinstance(gate, TransitionResult):
        return gate

    device = replace(gate, photos=gate.photos + (photo,))
    return _commit(
        certificate,
        actor,
        audit.ACTION_CAPTURE_PHOTO,
        device_id,
        now,
        devices=_replace_device(certificate, device),
    )


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


def record_health_check(
    certificate: Certificate,
    device_id: str,
    health: Mapping[str, Any],
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    actor = Role(actor)
    allowed = certificate.lifecycle_stage in _DEVICE_STAGES and actor in (Role.INSTALLER, Role.SYSTEM)
    gate = _device_gate(certificate, device_id, "record_health_check", actor, allowed, ERR_HEALTH)
    if isinstance(gate, TransitionResult):
        return gate

    now = now or now_rfc3339()
    patch = dict(health)
    patch["last_checked_at"] = now
    device = replace(gate, health=_patched_health(gate.health, patch))
    return _commit(
        certificate,
        actor,
        audit.ACTION_HEALTH_CHECK,
        device_id,
        now,
        devices=_replace_device(certificate, device),
    )


def pull_health_from_telemetry(
    certificate: Certificate,
    device_id: str,
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    """Mark every channel ``ok`` as reported by the system's telemetry."""
    actor = Role(actor)
    allowed = certificate.lifecycle_stage in _DEVICE_STAGES and actor is Role.SYSTEM
    gate = _device_gate(certificate, device_id, "pull_health_from_telemetry", actor, allowed, ERR_TELEMETRY)
    if isinstance(gate, TransitionResult):
        return gate

    now = now or now_rfc3339()
    patch: Dict[str, Any] = {c: HealthStatus.OK for c in HEALTH_CHANNELS}
    patch["last_checked_at"] = now
    device = replace(gate, health=_patched_health(gate.health, patch))
    return _commit(
        certificate,
        actor,
        audit.ACTION_TELEMETRY_PULL,
        device_id,
        now,
        devices=_replace_device(certificate, device),
    )


def override_health(
    certificate: Certificate,
    device_id: str,
    justification: str,
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    """Manually fail a device's functional check with a written justification."""
    actor = Role(actor)
    allowed = certificate.lifecycle_stage in _DEVICE_STAGES and actor in (Role.INSTALLER, Role.SYSTEM)
    gate = _device_gate(certificate, device_id, "override_health", actor, allowed, ERR_HEALTH)
    if isinstance(gate, TransitionResult):
        return gate
    justification = (justification or "").strip()
    if not justification:
        return _reject(certificate, "override_health", actor, ERR_OVERRIDE_JUSTIFICATION)

    now = now or now_rfc3339()
    device = replace(
        gate,
        health=_patched_health(
            gate.health,
            {
                "functional": HealthStatus.FAIL,
                "manual_override": True,
                "override_justification": justification,
                "last_checked_at": now,
            },
        ),
    )
    return _commit(
        certificate,
        actor,
        audit.ACTION_HEALTH_OVERRIDE,
        f"{device_id}: {justification}",
        now,
        devices=_replace_device(certificate, device),
    )


# -----------------------------------------------------------------------------
# Acceptance
# -----------------------------------------------------------------------------


def record_acceptance(
    certificate: Certificate,
    snapshot: AcceptanceSnapshot,
    actor: RoleLike,
    *,
    now: Optional[str] = None,
) -> TransitionResult:
    """Capture customer sign-off and lock the certificate."""
    actor = Role(actor)
    if certificate.immutable:
        return _reject(certificate, "record_acceptance", actor, ERR_LOCKED)
    if certificate.lifecycle_stage is not LifecycleStage.ACCEPTANCE or actor is not Role.CUSTOMER:
        return _reject(certificate, "record_acceptance", actor, ERR_ACCEPTANCE)
    if not certificate.devices:
        return _reject(certificate, "record_acceptance", actor, ERR_ACCEPTANCE_DEVICES)
    if not snapshot.customer_name.strip() or not snapshot.signature.strip():
        return _reject(certificate, "record_acceptance", actor, ERR_ACCEPTANCE_SNAPSHOT)

    result = _commit(
        certificate,
        actor,
        audit.ACTION_ACCEPTANCE,
        None,
        now,
        acceptance=snapshot,
        immutable=True,
    )
    logger.info(
        "Certificate locked",
        operation="record_acceptance",
        reference=result.certificate.quote_id or result.certificate.agreement_id,
        signed_at=snapshot.signed_at,
    )
    return result


__all__ = [
    "ERR_LOCKED",
    "FIELD_OWNERSHIP",
    "LIFECYCLE_ORDER",
    "FieldOwnership",
    "LifecycleStage",
    "Role",
    "TransitionResult",
    "add_device",
    "add_installer",
    "advance_stage",
    "append_photo",
    "can_advance_stage",
    "create_certificate",
    "is_field_editable",
    "override_health",
    "pull_health_from_telemetry",
    "record_acceptance",
    "record_health_check",
    "update_device",
    "update_field",
]
