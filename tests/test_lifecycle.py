"""Certificate lifecycle: stage ordering, role gating and the acceptance lock."""

import pytest

from docauth import audit
from docauth.lifecycle import (
    ERR_ACCEPTANCE,
    ERR_ACCEPTANCE_DEVICES,
    ERR_ACCEPTANCE_SNAPSHOT,
    ERR_ADD_DEVICE,
    ERR_FIELD_LOCKED,
    ERR_HEALTH,
    ERR_INSTALLER_NAME,
    ERR_INSTALLERS,
    ERR_LOCKED,
    ERR_OVERRIDE_JUSTIFICATION,
    ERR_PHOTO,
    ERR_STAGE_ORDER,
    ERR_TELEMETRY,
    ERR_UNKNOWN_DEVICE,
    ERR_UPDATE_DEVICE,
    add_device,
    add_installer,
    advance_stage,
    append_photo,
    can_advance_stage,
    create_certificate,
    is_field_editable,
    override_health,
    pull_health_from_telemetry,
    record_acceptance,
    record_health_check,
    update_device,
    update_field,
)
from docauth.sicar import LIFECYCLE_ORDER, AcceptanceSnapshot, HealthStatus, LifecycleStage, Role

NOW = "2025-03-10T12:00:00Z"

SNAPSHOT = AcceptanceSnapshot(customer_name="Ada Lovelace", signature="Ada Lovelace", signed_at="2025-03-12T17:00:00Z")


def at_stage(stage, cert=None):
    """Advance a certificate (default: a fresh one) up to ``stage``."""
    cert = cert or create_certificate()
    target = LifecycleStage(stage)
    while cert.lifecycle_stage is not target:
        nxt = LIFECYCLE_ORDER[cert.lifecycle_stage.index + 1]
        result = advance_stage(cert, nxt, Role.OPERATIONS, now=NOW)
        assert result.ok, result.error
        cert = result.certificate
    return cert


def with_device(cert=None):
    cert = cert or at_stage(LifecycleStage.INSTALLATION)
    result = add_device(cert, {"system_name": "Leak sensor", "model": "LS-2", "planned_location": "Kitchen"}, Role.INSTALLER, now=NOW)
    assert result.ok, result.error
    return result.certificate, result.certificate.devices[-1].id


def accepted_certificate():
    cert, _ = with_device()
    cert = at_stage(LifecycleStage.ACCEPTANCE, cert)
    result = record_acceptance(cert, SNAPSHOT, Role.CUSTOMER, now=NOW)
    assert result.ok, result.error
    return result.certificate


class TestStages:

    def test_new_certificate(self):
        cert = create_certificate()
        assert cert.lifecycle_stage is LifecycleStage.LEAD
        assert cert.installers == ("Installer of Record",)
        assert not cert.immutable
        assert cert.audit_log == ()

    def test_advance_in_order(self):
        cert = at_stage(LifecycleStage.ACCEPTANCE)
        assert cert.lifecycle_stage is LifecycleStage.ACCEPTANCE
        assert len(cert.audit_log) == len(LIFECYCLE_ORDER) - 1
        assert cert.audit_log[0].details == "Moved to acceptance"
        assert all(e.action == audit.ACTION_ADVANCE_STAGE for e in cert.audit_log)

    def test_skip_rejected(self):
        cert = create_certificate()
        result = advance_stage(cert, LifecycleStage.AGREEMENT, Role.SALES)
        assert not result.ok
        assert result.error == ERR_STAGE_ORDER
        assert result.certificate is cert

    def test_repeat_rejected(self):
        cert = at_stage(LifecycleStage.QUOTE)
        assert not can_advance_stage(cert, "quote")
        result = advance_stage(cert, "quote", "sales")
        assert result.error == ERR_STAGE_ORDER

    def test_backwards_rejected(self):
        cert = at_stage(LifecycleStage.PREINSTALL)
        assert advance_stage(cert, LifecycleStage.AGREEMENT, Role.OPERATIONS).error == ERR_STAGE_ORDER

    def test_unknown_stage_or_role_raises(self):
        with pytest.raises(ValueError):
            advance_stage(create_certificate(), "shipping", Role.SALES)
        with pytest.raises(ValueError):
            advance_stage(create_certificate(), "quote", "intern")


class TestFieldGating:

    def test_customer_owns_contact_fields_until_lead_passes(self):
        cert = create_certificate()
        assert is_field_editable(cert, "customer_name", Role.CUSTOMER)
        assert not is_field_editable(cert, "customer_name", Role.SALES)
        later = at_stage(LifecycleStage.QUOTE)
        assert not is_field_editable(later, "customer_name", Role.CUSTOMER)

    def test_field_editable_before_home_stage(self):
        cert = create_certificate()
        assert is_field_editable(cert, "installation_job_id", Role.OPERATIONS)
        assert is_field_editable(at_stage("preinstall"), "installation_job_id", Role.OPERATIONS)
        assert not is_field_editable(at_stage("installation"), "installation_job_id", Role.OPERATIONS)

    def test_update_field(self):
        cert = at_stage(LifecycleStage.QUOTE)
        result = update_field(cert, "quote_id", "KAEC-A2-20250301", Role.QUOTING_SYSTEM, now=NOW)
        assert result.ok
        assert result.certificate.quote_id == "KAEC-A2-20250301"
        assert result.certificate.audit_log[0].action == audit.ACTION_UPDATE_FIELD
        assert result.certificate.audit_log[0].actor == "quoting-system"

    def test_update_customer_field(self):
        result = update_field(create_certificate(), "service_city", "Kapolei", "customer")
        assert result.certificate.customer.service_city == "Kapolei"

    def test_update_field_wrong_role(self):
        cert = at_stage(LifecycleStage.AGREEMENT)
        result = update_field(cert, "agreement_id", "AG-1", Role.SALES)
        assert result.error == ERR_FIELD_LOCKED
        assert result.certificate.agreement_id == ""

    def test_update_field_after_window(self):
        cert = at_stage(LifecycleStage.PREINSTALL)
        assert update_field(cert, "quote_id", "Q-1", Role.QUOTING_SYSTEM).error == ERR_FIELD_LOCKED

    def test_unknown_field_raises(self):
        with pytest.raises(ValueError):
            is_field_editable(create_certificate(), "favourite_color", Role.CUSTOMER)


class TestInstallers:

    def test_operations_add_installer_in_preinstall(self):
        result = add_installer(at_stage("preinstall"), "  Kai Akana ", Role.OPERATIONS, now=NOW)
        assert result.ok
        assert result.certificate.installers == ("Installer of Record", "Kai Akana")

    @pytest.mark.parametrize("stage,role", [("preinstall", Role.INSTALLER), ("installation", Role.OPERATIONS)])
    def test_rejected_outside_window(self, stage, role):
        assert add_installer(at_stage(stage), "Kai", role).error == ERR_INSTALLERS

    def test_blank_name(self):
        assert add_installer(at_stage("preinstall"), "  ", Role.OPERATIONS).error == ERR_INSTALLER_NAME


class TestDevices:

    def test_installer_adds_device_during_installation(self):
        cert, device_id = with_device()
        device = cert.device(device_id)
        assert device.system_name == "Leak sensor"
        assert device.health.power is HealthStatus.UNKNOWN
        assert cert.audit_log[0].action == audit.ACTION_ADD_DEVICE

    @pytest.mark.parametrize("stage,role", [("installation", Role.SYSTEM), ("postinstall", Role.INSTALLER)])
    def test_add_device_gated(self, stage, role):
        result = add_device(at_stage(stage), {"system_name": "Hub"}, role)
        assert result.error == ERR_ADD_DEVICE

    def test_add_device_bad_attributes_raise(self):
        cert = at_stage("installation")
        with pytest.raises(ValueError):
            add_device(cert, {"system_name": "Hub", "colour": "white"}, Role.INSTALLER)
        with pytest.raises(ValueError):
            add_device(cert, {"model": "X"}, Role.INSTALLER)

    @pytest.mark.parametrize("value", [None, 42, ["Acme"]])
    def test_add_device_rejects_non_string_values(self, value):
        with pytest.raises(ValueError):
            add_device(at_stage("installation"), {"system_name": "Hub", "manufacturer": value}, Role.INSTALLER)

    def test_optional_device_fields_accept_none(self):
        result = add_device(at_stage("installation"), {"system_name": "Hub", "serial_number": None}, Role.INSTALLER)
        assert result.ok
        assert result.certificate.devices[0].serial_number is None

    def test_update_device_rejects_non_string_values(self):
        cert, device_id = with_device()
        with pytest.raises(ValueError):
            update_device(cert, device_id, {"model": None}, Role.INSTALLER)
        with pytest.raises(ValueError):
            update_device(cert, device_id, {"purpose": 7}, Role.INSTALLER)

    def test_update_device_in_postinstall(self):
        cert, device_id = with_device()
        cert = at_stage("postinstall", cert)
        result = update_device(cert, device_id, {"installed_location": "Kitchen sink", "serial_number": "SN-1"}, Role.SYSTEM)
        assert result.ok
        assert result.certificate.device(device_id).installed_location == "Kitchen sink"

    def test_update_device_wrong_role(self):
        cert, device_id = with_device()
        assert update_device(cert, device_id, {"model": "X"}, Role.CUSTOMER).error == ERR_UPDATE_DEVICE

    def test_unknown_device(self):
        cert, _ = with_device()
        result = update_device(cert, "nope", {"model": "X"}, Role.INSTALLER)
        assert result.error == ERR_UNKNOWN_DEVICE
        assert result.certificate is cert

    def test_photos_only_during_installation(self):
        cert, device_id = with_device()
        result = append_photo(cert, device_id, "photo-1.jpg", Role.INSTALLER)
        assert result.certificate.device(device_id).photos == ("photo-1.jpg",)
        post = at_stage("postinstall", result.certificate)
        assert append_photo(post, device_id, "photo-2.jpg", Role.INSTALLER).error == ERR_PHOTO


class TestHealth:

    def test_record_health_check_stamps_time(self):
        cert, device_id = with_device()
        result = record_health_check(cert, device_id, {"power": "ok", "battery": HealthStatus.FAIL}, Role.INSTALLER, now=NOW)
        health = result.certificate.device(device_id).health
        assert health.power is HealthStatus.OK
        assert health.battery is HealthStatus.FAIL
        assert health.connectivity is HealthStatus.UNKNOWN
        assert health.last_checked_at == NOW

    def test_health_check_gated(self):
        cert, device_id = with_device()
        assert record_health_check(cert, device_id, {"power": "ok"}, Role.OPERATIONS).error == ERR_HEALTH

    def test_telemetry_pull_system_only(self):
        cert, device_id = with_device()
        assert pull_health_from_telemetry(cert, device_id, Role.INSTALLER).error == ERR_TELEMETRY
        result = pull_health_from_telemetry(cert, device_id, Role.SYSTEM, now=NOW)
        health = result.certificate.device(device_id).health
        assert {health.power, health.connectivity, health.battery, health.functional} == {HealthStatus.OK}
        assert result.certificate.audit_log[0].action == audit.ACTION_TELEMETRY_PULL

    def test_override_requires_justification(self):
        cert, device_id = with_device()
        assert override_health(cert, device_id, "  ", Role.INSTALLER).error == ERR_OVERRIDE_JUSTIFICATION

    def test_override_fails_functional(self):
        cert, device_id = with_device()
        result = override_health(cert, device_id, "Sensor unreachable from bedroom", Role.INSTALLER, now=NOW)
        health = result.certificate.device(device_id).health
        assert health.functional is HealthStatus.FAIL
        assert health.manual_override
        assert health.override_justification == "Sensor unreachable from bedroom"
        assert result.certificate.audit_log[0].details == f"{device_id}: Sensor unreachable from bedroom"


class TestAcceptance:

    def test_acceptance_locks(self):
        cert = accepted_certificate()
        assert cert.immutable
        assert cert.acceptance == SNAPSHOT
        assert cert.audit_log[0].action == audit.ACTION_ACCEPTANCE

    def test_acceptance_requires_customer_in_acceptance_stage(self):
        cert, _ = with_device()
        assert record_acceptance(cert, SNAPSHOT, Role.CUSTOMER).error == ERR_ACCEPTANCE
        final = at_stage("acceptance", cert)
        assert record_acceptance(final, SNAPSHOT, Role.OPERATIONS).error == ERR_ACCEPTANCE

    def test_acceptance_requires_device(self):
        cert = at_stage("acceptance")
        assert record_acceptance(cert, SNAPSHOT, Role.CUSTOMER).error == ERR_ACCEPTANCE_DEVICES

    def test_acceptance_requires_signature(self):
        cert, _ = with_device()
        cert = at_stage("acceptance", cert)
        unsigned = AcceptanceSnapshot(customer_name="Ada", signature=" ", signed_at=NOW)
        assert record_acceptance(cert, unsigned, Role.CUSTOMER).error == ERR_ACCEPTANCE_SNAPSHOT

    def test_locked_certificate_rejects_everything(self):
        cert = accepted_certificate()
        device_id = cert.devices[0].id
        attempts = [
            advance_stage(cert, "acceptance", Role.CUSTOMER),
            update_field(cert, "customer_name", "Eve", Role.CUSTOMER),
            add_installer(cert, "Kai", Role.OPERATIONS),
            add_device(cert, {"system_name": "Hub"}, Role.INSTALLER),
            update_device(cert, device_id, {"model": "X"}, Role.INSTALLER),
            update_device(cert, "missing", {"model": "X"}, Role.INSTALLER),
            append_photo(cert, device_id, "p.jpg", Role.INSTALLER),
            record_health_check(cert, device_id, {"power": "fail"}, Role.SYSTEM),
            pull_health_from_telemetry(cert, device_id, Role.SYSTEM),
            override_health(cert, device_id, "because", Role.SYSTEM),
            record_acceptance(cert, SNAPSHOT, Role.CUSTOMER),
        ]
        for result in attempts:
            assert result.error == ERR_LOCKED
            assert result.certificate is cert
        assert not is_field_editable(cert, "customer_name", Role.CUSTOMER)
