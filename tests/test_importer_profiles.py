import pytest
from sqlalchemy.exc import NoResultFound

from intake_app.importer.context import ImportContext
from intake_app.importer.errors import MappingConflict
from intake_app.importer.pipeline.profiles import MappingProfileStore
from intake_app.models import LeadMappingProfile, db


def test_save_and_list_profiles(import_ctx, test_user):
    store = MappingProfileStore(db.session)
    store.save(import_ctx, "Zillow", {"E-Mail": "home_email", "Junk": "not_a_field"})
    store.save(import_ctx, "Bank", {"Phone": "mobile_phone"}, is_default=True)

    profiles = store.list(import_ctx)

    assert [profile.name for profile in profiles] == ["Bank", "Zillow"]
    zillow = profiles[1]
    assert zillow.mapping_json == {"E-Mail": "home_email"}
    assert zillow.created_by_user_id == test_user.id
    payload = zillow.to_dict()
    assert payload["mapping"] == {"E-Mail": "home_email"}
    assert payload["is_default"] is False


def test_saving_existing_name_replaces_mapping(import_ctx):
    store = MappingProfileStore(db.session)
    first = store.save(import_ctx, "Zillow", {"Email": "home_email"})
    second = store.save(import_ctx, " Zillow ", {"Phone": "mobile_phone"})

    assert first.id == second.id
    assert db.session.query(LeadMappingProfile).count() == 1
    assert store.get(import_ctx, first.id).mapping_json == {"Phone": "mobile_phone"}


def test_only_one_default_per_organization(import_ctx):
    store = MappingProfileStore(db.session)
    store.save(import_ctx, "First", {"Email": "home_email"}, is_default=True)
    store.save(import_ctx, "Second", {"Email": "work_email"}, is_default=True)

    defaults = [profile.name for profile in store.list(import_ctx) if profile.is_default]

    assert defaults == ["Second"]
    assert store.default_mapping(import_ctx) == {"Email": "work_email"}


def test_save_validates_input(import_ctx):
    store = MappingProfileStore(db.session)

    with pytest.raises(ValueError):
        store.save(import_ctx, "  ", {"Email": "home_email"})
    with pytest.raises(MappingConflict):
        store.save(import_ctx, "Broken", {"Email": "home_email", "E-Mail": "home_email"})


def test_profiles_are_organization_scoped(import_ctx, other_organization):
    store = MappingProfileStore(db.session)
    profile = store.save(import_ctx, "Zillow", {"Email": "home_email"})
    other_ctx = ImportContext(organization_id=other_organization.id)

    assert store.list(other_ctx) == []
    assert store.get_by_name(other_ctx, "Zillow") is None
    assert store.default_mapping(other_ctx) == {}
    with pytest.raises(NoResultFound):
        store.get(other_ctx, profile.id)
    with pytest.raises(NoResultFound):
        store.delete(other_ctx, profile.id)


def test_delete_profile(import_ctx):
    store = MappingProfileStore(db.session)
    profile = store.save(import_ctx, "Zillow", {"Email": "home_email"})

    store.delete(import_ctx, profile.id)

    assert store.get_by_name(import_ctx, "Zillow") is None
