import dataclasses

import pytest

from docauth.audit import AuditEntry
from docauth.sicar import (
    LIFECYCLE_ORDER,
    AcceptanceSnapshot,
    Certificate,
    DeviceHealth,
    DeviceRecord,
    HealthStatus,
    LifecycleStage,
    build_hash_payload,
    build_sicar_reference,
    compute_hash,
)


def _cert(**kw):
    devices = (
        DeviceRecord(id="d-1", system_name="Leak sensor", model="LS-2", photos=("a.jpg", "b.jpg")),
        DeviceRecord(id="d-2", system_name="Hub", model="H-1", serial_number="SN-9"),
    )
    base = dict(
        lifecycle_stage=LifecycleStage.POSTINSTALL,
        quote_id="KAEC-A2-20250301",
        installers=("Installer of Record", "Kai Akana"),
        devices=devices,
        audit_log=(
            AuditEntry("e2", "2025-03-10T12:00:02Z", "installer", "Added device", "Hub"),
            AuditEntry("e1", "2025-03-10T12:00:01Z", "operations", "Advanced lifecycle stage", "Moved to postinstall"),
        ),
    )
    base.update(kw)
    return Certificate(**base)


def test_reference_precedence():
    assert build_sicar_reference(_cert()) == "KAEC-A2-20250301"
    assert build_sicar_reference(_cert(quote_id="", agreement_id="AG-7")) == "AG-7"
    assert build_sicar_reference(Certificate()) == "SICAR"


def test_payload_projection():
    payload = build_hash_payload(_cert())
    assert payload["doc_type"] == "SICAR"
    assert payload["lifecycle_stage"] is LifecycleStage.POSTINSTALL
    assert [d["system_name"] for d in payload["devices"]] == ["Hub", "Leak sensor"]
    assert payload["devices"][1]["photos"] == 2
    assert payload["stages"] == [
        {"actor": "operations", "action": "Advanced lifecycle stage", "at": "2025-03-10T12:00:01Z"},
    ]
    assert payload["acceptance"] is None
    assert payload["locked_at"] == ""
    assert [s["stage"] for s in payload["lifecycle_order"]] == [s.value for s in LIFECYCLE_ORDER]


def test_hash_ignores_device_and_installer_order():
    cert = _cert()
    shuffled = dataclasses.replace(cert, devices=tuple(reversed(cert.devices)), installers=tuple(reversed(cert.installers)))
    assert compute_hash(shuffled) == compute_hash(cert)


def test_hash_ignores_photo_contents_but_not_count():
    cert = _cert()
    leak = cert.devices[0]
    renamed = dataclasses.replace(cert, devices=(dataclasses.replace(leak, photos=("x.jpg", "y.jpg")), cert.devices[1]))
    fewer = dataclasses.replace(cert, devices=(dataclasses.replace(leak, photos=("x.jpg",)), cert.devices[1]))
    assert compute_hash(renamed) == compute_hash(cert)
    assert compute_hash(fewer) != compute_hash(cert)


@pytest.mark.parametrize(
    "change",
    [
        {"lifecycle_stage": LifecycleStage.ACCEPTANCE},
        {"immutable": True},
        {"quote_id": "KAEC-A3-20250301"},
        {"agreement_id": "AG-1"},
        {"installation_job_id": "JOB-1"},
        {"installers": ("Installer of Record",)},
        {"acceptance": AcceptanceSnapshot("Ada", "Ada", "2025-03-12T17:00:00Z")},
    ],
)
def test_hash_sensitive_to_each_field(change):
    assert compute_hash(_cert(**change)) != compute_hash(_cert())


def test_hash_sensitive_to_device_health():
    cert = _cert()
    hub = cert.devices[1]
    failed = dataclasses.replace(hub, health=DeviceHealth(functional=HealthStatus.FAIL))
    assert compute_hash(dataclasses.replace(cert, devices=(cert.devices[0], failed))) != compute_hash(cert)


def test_non_stage_audit_entries_not_hashed():
    cert = _cert()
    extra = AuditEntry("e3", "2025-03-10T12:00:03Z", "installer", "Captured install photo", "d-1")
    assert compute_hash(dataclasses.replace(cert, audit_log=(extra,) + cert.audit_log)) == compute_hash(cert)


def test_unknown_enum_values_raise():
    with pytest.raises(ValueError):
        Certificate(lifecycle_stage="shipping")
    with pytest.raises(ValueError):
        DeviceHealth(power="great")


def test_dict_round_trip():
    cert = _cert(acceptance=AcceptanceSnapshot("Ada", "Ada", "2025-03-12T17:00:00Z"), immutable=True)
    assert Certificate.from_dict(cert.to_dict()) == cert


def test_missing_device_strings_hash_as_empty():
    hub = DeviceRecord(id="d-3", system_name="Hub", model=None, manufacturer=None)
    cert = _cert(devices=_cert().devices + (hub,))
    payload = build_hash_payload(cert)
    assert [d["model"] for d in payload["devices"] if d["system_name"] == "Hub"] == ["", "H-1"]
    assert compute_hash(Certificate.from_dict(cert.to_dict())) == compute_hash(cert)
