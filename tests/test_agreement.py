import dataclasses

import pytest

from docauth.agreement import (
    CONTENT_IDENTIFIERS,
    AgreementContext,
    accept_agreement,
    agreement_hash,
    build_agreement_reference,
    build_hash_payload,
    compute_hash,
    create_agreement,
    is_provisional,
    revise_agreement,
)
from docauth.quote import supersede_quote


def test_create_binds_quote(a2_quote):
    context = create_agreement(dataclasses.replace(a2_quote, quote_hash=None))
    assert context.quote.quote_hash == a2_quote.quote_hash
    assert build_agreement_reference(context.quote) == "KAEC-A2-20250301"
    assert is_provisional(context)
    assert not context.accepted


def test_payload_binds_quote_and_content(a2_quote):
    payload = build_hash_payload(create_agreement(a2_quote))
    assert payload["content_identifiers"] == list(CONTENT_IDENTIFIERS)
    assert payload["quote"]["quote_hash"] == a2_quote.quote_hash
    assert payload["quote"]["reference"] == "KAEC-A2-20250301"
    assert [a["id"] for a in payload["add_ons"]] == ["door-awareness", "gentle-checkin"]
    assert payload["package"]["price"] == 4950
    assert payload["acceptance"] == {"accepted": False, "full_name": "", "acceptance_date": ""}


def test_accepting_changes_the_hash(a2_quote):
    context = create_agreement(a2_quote)
    accepted = accept_agreement(context, "  Ada Lovelace ", "2025-03-04", accepted_at="2025-03-04T18:00:00Z")
    assert accepted.accepted
    assert not is_provisional(accepted)
    assert accepted.acceptance.full_name == "Ada Lovelace"
    assert accepted.acceptance.agreement_hash == compute_hash(accepted)
    assert agreement_hash(accepted) != agreement_hash(context)


def test_hash_sensitive_to_acceptance_fields(a2_quote):
    accepted = accept_agreement(create_agreement(a2_quote), "Ada Lovelace", "2025-03-04")
    other_name = dataclasses.replace(accepted, acceptance=dataclasses.replace(accepted.acceptance, full_name="Ada King"))
    other_date = dataclasses.replace(accepted, acceptance=dataclasses.replace(accepted.acceptance, acceptance_date="2025-03-05"))
    assert compute_hash(other_name) != compute_hash(accepted)
    assert compute_hash(other_date) != compute_hash(accepted)


def test_acceptance_metadata_not_hashed(a2_quote):
    accepted = accept_agreement(create_agreement(a2_quote), "Ada Lovelace", "2025-03-04", email_to="ada@example.com")
    moved = dataclasses.replace(
        accepted,
        acceptance=dataclasses.replace(accepted.acceptance, accepted_at="2030-01-01T00:00:00Z", email_to=None),
    )
    assert compute_hash(moved) == compute_hash(accepted)


@pytest.mark.parametrize("name,day", [("   ", "2025-03-04"), ("Ada", "someday")])
def test_accept_rejects_bad_input(a2_quote, name, day):
    with pytest.raises(ValueError):
        accept_agreement(create_agreement(a2_quote), name, day)


def test_revision_supersedes(a2_quote):
    original = accept_agreement(create_agreement(a2_quote), "Ada Lovelace", "2025-03-04")
    new_quote = supersede_quote(a2_quote, selected_add_ons=["gentle-checkin"], generated_at="2025-03-05T10:00:00Z")
    revised = revise_agreement(original, new_quote)
    assert revised.supersedes_agreement_hash == agreement_hash(original)
    assert not revised.accepted
    assert compute_hash(revised) != agreement_hash(original)
    assert build_hash_payload(revised)["quote"]["prior_quote_hash"] == a2_quote.quote_hash


def test_revision_of_same_quote_hashes_differently(a2_quote):
    original = create_agreement(a2_quote)
    revised = revise_agreement(original, a2_quote)
    assert compute_hash(revised) != compute_hash(original)


def test_dict_round_trip(a2_quote):
    accepted = accept_agreement(create_agreement(a2_quote), "Ada Lovelace", "2025-03-04", accepted_at="2025-03-04T18:00:00Z")
    revised = dataclasses.replace(accepted, supersedes_agreement_hash="a" * 64)
    assert AgreementContext.from_dict(revised.to_dict()) == revised
