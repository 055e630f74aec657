import pytest

from leadfinder.core.store import RESEARCH_FAILED, RETRY_FAILED, CandidateStore
from leadfinder.etl.transform import research_fields, to_research_result
from leadfinder.models import BusinessStatus, Candidate, EnrichmentState


def _candidate(candidate_id="c1", **kwargs):
    return Candidate(id=candidate_id, discovery_name=kwargs.pop("name", "Acme"), **kwargs)


@pytest.fixture
def store():
    store = CandidateStore()
    store.admit(_candidate(), ("site", "acme.test", "acme"))
    return store


def test_admit_rejects_known_key_and_known_id(store):
    assert store.admit(_candidate("c2"), ("site", "acme.test", "acme")) is False
    assert store.admit(_candidate("c1", name="Other"), ("site", "other.test", "other")) is False
    assert store.admit(_candidate("c3", name="Other"), ("site", "other.test", "other")) is True
    assert [c.id for c in store.snapshot()] == ["c1", "c3"]


def test_snapshot_returns_copies(store):
    copy = store.snapshot()[0]
    copy.phone = "mutated"
    assert store.get("c1").phone == ""


def test_attempt_lifecycle(store):
    generation = store.begin_attempt("c1")
    assert generation == 1
    assert store.get("c1").enrichment_state is EnrichmentState.IN_PROGRESS
    assert store.begin_attempt("c1") is None

    assert store.merge("c1", generation, {"phone": "555-1234", "description": "Cafe."}) is True
    record = store.get("c1")
    assert record.enrichment_state is EnrichmentState.DONE
    assert record.phone == "555-1234"

    assert store.begin_attempt("c1") is None
    assert store.begin_attempt("c1", retry=True, today="2024-06-01") == 2
    assert store.get("c1").date_found == "2024-06-01"


def test_merge_never_blanks_fields(store):
    generation = store.begin_attempt("c1")
    store.merge("c1", generation, {"phone": "555-1234", "email": "a@acme.test"})
    generation = store.begin_attempt("c1", retry=True)

    payload = {"companyName": "Acme Inc", "phone": "Not Found", "email": "not found", "description": ""}
    store.merge("c1", generation, research_fields(to_research_result(payload)))

    record = store.get("c1")
    assert record.phone == "555-1234"
    assert record.email == "a@acme.test"
    assert record.company_name == "Acme Inc"


def test_stale_generation_is_discarded(store):
    old = store.begin_attempt("c1")
    store.fail("c1", old, "Request timed out.")
    new = store.begin_attempt("c1", retry=True)

    assert store.merge("c1", old, {"description": "stale"}) is False
    assert store.fail("c1", old, "late failure") is False
    assert store.merge("c1", new, {"description": "fresh"}) is True

    record = store.get("c1")
    assert record.description == "fresh"
    assert record.enrichment_state is EnrichmentState.DONE
    assert record.generation == new


def test_newer_result_wins_when_older_completes_last(store):
    first = store.begin_attempt("c1")
    store.fail("c1", first, "Request timed out.")
    second = store.begin_attempt("c1", retry=True)

    store.merge("c1", second, {"phone": "222"})
    store.merge("c1", first, {"phone": "111"})

    assert store.get("c1").phone == "222"


def test_fail_messages(store):
    generation = store.begin_attempt("c1")
    store.fail("c1", generation, "boom")
    record = store.get("c1")
    assert record.enrichment_state is EnrichmentState.FAILED
    assert record.description == RESEARCH_FAILED
    assert record.error == "boom"

    other = CandidateStore()
    other.admit(_candidate("c9"), ("place", "c9"))
    generation = other.begin_attempt("c9", retry=True)
    other.fail("c9", generation, "boom", retry=True)
    assert other.get("c9").description == RETRY_FAILED


def test_successful_retry_clears_failure_description(store):
    generation = store.begin_attempt("c1")
    store.fail("c1", generation, "boom")
    assert store.get("c1").description == RESEARCH_FAILED

    generation = store.begin_attempt("c1", retry=True)
    store.merge("c1", generation, {"phone": "1"})

    record = store.get("c1")
    assert record.enrichment_state is EnrichmentState.DONE
    assert record.description == ""
    assert record.error == ""
    assert record.phone == "1"


def test_successful_retry_keeps_real_description(store):
    generation = store.begin_attempt("c1")
    store.merge("c1", generation, {"description": "Good coffee."})
    generation = store.begin_attempt("c1", retry=True)
    store.merge("c1", generation, {"phone": "1"})
    assert store.get("c1").description == "Good coffee."


def test_fail_is_noop_after_success(store):
    generation = store.begin_attempt("c1")
    store.merge("c1", generation, {"description": "ok"})
    assert store.fail("c1", generation, "interrupted") is False
    assert store.get("c1").enrichment_state is EnrichmentState.DONE


def test_set_status(store):
    updated = store.set_status("c1", BusinessStatus.REPLIED, " ")
    assert updated.status is BusinessStatus.REPLIED
    assert updated.email_thread_id == "N/A"
    assert store.set_status("nope", BusinessStatus.EMAILED) is None


def test_ids_in_state(store):
    store.admit(_candidate("c2", name="B"), ("place", "c2"))
    store.begin_attempt("c2")
    assert store.ids_in_state(EnrichmentState.PENDING) == ["c1"]
    assert store.ids_in_state(EnrichmentState.IN_PROGRESS) == ["c2"]
