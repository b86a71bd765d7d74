import pytest

from leadpull.dedupe import make_dedupe_key, normalize_email
from leadpull.errors import RecordMappingError
from leadpull.ingest import INSERTED, SKIPPED, ingest_record, score_record
from leadpull.models import ExternalRecord, TargetingCombo

from conftest import make_record

COMBO = TargetingCombo(industries=("SaaS",), geography=("CA",), workspace_ids=["ws-1"])


def _ingest(store, raw, workspace_id="ws-1", min_quality_score=20):
    return ingest_record(
        store, raw, workspace_id, COMBO, source="segment_pull", min_quality_score=min_quality_score
    )


def test_normalize_email():
    assert normalize_email("  Ada@Example.COM ") == "ada@example.com"
    assert normalize_email(None) == ""
    assert make_dedupe_key("ws-1", " A@B.io") == ("ws-1", "a@b.io")


def test_insert_then_duplicate_is_skipped(store, fetch_all):
    assert _ingest(store, make_record("Ada@Example.com")) == INSERTED
    assert _ingest(store, make_record("  ada@example.COM ")) == SKIPPED

    leads = fetch_all("leads")
    assert len(leads) == 1
    lead = leads[0]
    assert lead["email"] == "ada@example.com"
    assert lead["workspace_id"] == "ws-1"
    assert lead["source"] == "segment_pull"
    assert lead["status"] == "new"
    assert lead["country"] == "US"
    assert lead["state"] == "CA"
    assert lead["full_name"] == "Ada Lovelace"
    assert lead["tags"] == ["segment-pull", "saas"]
    assert lead["source_details"] == {"combo_key": "SaaS|CA", "industries": ["SaaS"], "geography": ["CA"]}


def test_same_email_in_another_workspace_is_a_new_lead(store, fetch_all):
    assert _ingest(store, make_record("ada@example.com"), "ws-1") == INSERTED
    assert _ingest(store, make_record("ada@example.com"), "ws-2") == INSERTED

    assert sorted(l["workspace_id"] for l in fetch_all("leads")) == ["ws-1", "ws-2"]


def test_insert_losing_a_concurrent_race_is_skipped(store, fetch_all, monkeypatch):
    assert _ingest(store, make_record("ada@example.com")) == INSERTED
    # both writers passed the lookup; the unique (workspace_id, email) constraint decides
    monkeypatch.setattr(store, "find_lead_id", lambda *a, **k: None)

    assert _ingest(store, make_record("ada@example.com")) == SKIPPED
    assert len(fetch_all("leads")) == 1


def test_record_without_email_is_skipped(store, fetch_all):
    assert _ingest(store, make_record(None)) == SKIPPED
    assert _ingest(store, make_record("not-an-email")) == SKIPPED
    assert fetch_all("leads") == []


def test_unmappable_record_is_skipped(store, fetch_all):
    assert _ingest(store, "just a string") == SKIPPED
    assert _ingest(store, {"PERSONAL_EMAILS": "a@b.io", "FIRST_NAME": {"nested": True}}) == SKIPPED
    assert fetch_all("leads") == []


def test_low_quality_record_is_skipped(store, fetch_all):
    thin = make_record("thin@example.com", first=None, last=None, city=None, state=None)

    assert _ingest(store, thin) == SKIPPED
    assert _ingest(store, thin, min_quality_score=0) == INSERTED
    assert len(fetch_all("leads")) == 1


def test_industry_falls_back_to_combo(store, fetch_all):
    assert _ingest(store, make_record("x@example.com", industry=None)) == INSERTED
    assert fetch_all("leads")[0]["company_industry"] == "SaaS"


def test_from_provider_rejects_non_mapping():
    with pytest.raises(RecordMappingError):
        ExternalRecord.from_provider(["a@b.io"])


def test_from_provider_prefers_personal_email_and_splits_lists():
    record = ExternalRecord.from_provider(
        {
            "PERSONAL_EMAILS": "bogus, me@home.io",
            "BUSINESS_EMAIL": ["me@work.io"],
            "MOBILE_PHONE": "555-0100, 555-0101",
            "DIRECT_NUMBER": "555-0100",
        }
    )

    assert record.email == "me@home.io"
    assert record.phones == ["555-0100", "555-0101"]


def test_score_rewards_verified_contact_data():
    rich = ExternalRecord.from_provider(
        {
            "BUSINESS_VERIFIED_EMAILS": "ceo@acme.io",
            "BUSINESS_EMAIL": "ceo@acme.io",
            "FIRST_NAME": "Grace",
            "LAST_NAME": "Hopper",
            "MOBILE_PHONE": "555-0100",
            "COMPANY_NAME": "Acme",
            "JOB_TITLE": "CEO",
        }
    )
    thin = ExternalRecord.from_provider({"PERSONAL_EMAILS": "x@y.io"})

    assert score_record(rich) == 30 + 15 + 12 + 8 + 7
    assert score_record(thin) == 8
