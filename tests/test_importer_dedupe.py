from intake_app.importer.context import ImportContext
from intake_app.importer.pipeline.deterministic import (
    BatchKeyRegistry,
    DedupeDecision,
    find_matching_lead_id,
    resolve,
)
from intake_app.importer.pipeline.validation import ValidatedLeadRecord
from intake_app.models import Lead, db


def _lead(organization, **fields):
    lead = Lead(organization_id=organization.id, **fields)
    db.session.add(lead)
    db.session.commit()
    return lead


def _record(row_index=2, **fields):
    return ValidatedLeadRecord(row_index=row_index, fields=fields)


def test_lead_match_keys_are_derived_on_write(test_organization):
    lead = _lead(
        test_organization,
        first_name="Ada",
        last_name="Lovelace",
        home_email=" Ada@Example.com",
        mobile_phone="(555) 010-0100",
        property_street="1 Main St",
    )

    assert lead.email_key == "ada@example.com"
    assert lead.phone_key == "5550100100"
    assert lead.name_address_key == "ada|lovelace|1 main st"


def test_email_match_wins_over_phone(test_organization, import_ctx):
    by_email = _lead(test_organization, home_email="ada@example.com")
    _lead(test_organization, mobile_phone="5550100")

    decision = resolve(
        db.session,
        _record(home_email="ada@example.com", mobile_phone="5550100"),
        import_ctx,
        BatchKeyRegistry(),
    )

    assert decision == DedupeDecision(action="update", lead_id=by_email.id, matched_on="email")
    assert decision.is_match


def test_phone_then_name_address_fallbacks(test_organization, import_ctx):
    by_phone = _lead(test_organization, mobile_phone="5550100")
    by_address = _lead(test_organization, first_name="Ada", last_name="Lovelace", property_street="1 Main St")

    phone_decision = resolve(
        db.session, _record(home_email="new@example.com", mobile_phone="555-0100"), import_ctx, BatchKeyRegistry()
    )
    address_decision = resolve(
        db.session,
        _record(first_name="ADA", last_name="lovelace", property_street="1 main st"),
        import_ctx,
        BatchKeyRegistry(),
    )

    assert (phone_decision.lead_id, phone_decision.matched_on) == (by_phone.id, "phone")
    assert (address_decision.lead_id, address_decision.matched_on) == (by_address.id, "name_address")


def test_no_match_creates(test_organization, import_ctx):
    _lead(test_organization, home_email="someone@example.com")

    decision = resolve(db.session, _record(home_email="other@example.com"), import_ctx, BatchKeyRegistry())

    assert decision.action == "create"
    assert decision.lead_id is None


def test_deleted_leads_never_match(test_organization, import_ctx):
    _lead(test_organization, home_email="ada@example.com", is_deleted=True)

    decision = resolve(db.session, _record(home_email="ada@example.com"), import_ctx, BatchKeyRegistry())

    assert decision.action == "create"


def test_matching_is_scoped_to_the_organization(test_organization, other_organization, import_ctx):
    _lead(other_organization, home_email="ada@example.com")

    decision = resolve(db.session, _record(home_email="ada@example.com"), import_ctx, BatchKeyRegistry())

    assert decision.action == "create"


def test_oldest_lead_wins_when_keys_are_shared(test_organization):
    oldest = _lead(test_organization, home_email="ada@example.com")
    _lead(test_organization, home_email="ada@example.com")

    assert find_matching_lead_id(db.session, test_organization.id, "email", "ada@example.com") == oldest.id


def test_earlier_batch_row_marks_duplicate(test_organization):
    ctx = ImportContext(organization_id=test_organization.id)
    batch = BatchKeyRegistry()
    first = _record(row_index=2, home_email="ada@example.com")
    second = _record(row_index=3, first_name="Ada", home_email="ADA@example.com")

    assert resolve(db.session, first, ctx, batch).action == "create"
    batch.register(first)
    assert len(batch) == 1

    decision = resolve(db.session, second, ctx, batch)
    assert decision == DedupeDecision(action="skip_duplicate", matched_on="email")
