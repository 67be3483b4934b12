"""
Tests for the sweep engine: change detection, merging and failure handling.
"""
import pytest

from neyasbook.errors import NotFoundError, UpstreamFailure
from neyasbook.knowledge_extraction import EntityExtractor, SweepEngine, merge_extracted_entity
from neyasbook.models import EntityProfile, ExtractedEntity, ManifestNode, entity_id_from_name

from conftest import FakeLLMClient, PROJECT_ID, extraction_reply, paragraph_doc, three_chapter_manifest

ELIAS = {
    "name": "Elias",
    "type": "character",
    "status": "Arrives in town",
    "motivation": "Find work",
    "newFacts": ["Elias is a doctor"],
}


def make_engine(store, replies):
    llm = FakeLLMClient(replies)
    return SweepEngine(store, EntityExtractor(llm)), llm


def seed_project(store, chapters=("1",)):
    store.save_manifest(PROJECT_ID, three_chapter_manifest())
    for chapter_id in chapters:
        store.save_chapter(PROJECT_ID, chapter_id, paragraph_doc(f"Text of chapter {chapter_id}."))


def test_entity_id_derivation():
    assert entity_id_from_name("Dr. Elias Voss") == "dr-elias-voss"
    assert ExtractedEntity(name="Dr. Elias Voss", type="character").entity_id == "dr-elias-voss"


def test_sweep_creates_profile_and_index(store):
    seed_project(store)
    engine, llm = make_engine(store, [extraction_reply(ELIAS)])

    result = engine.sweep(PROJECT_ID)

    assert (result.scanned, result.skipped, result.failed) == (1, 0, 0)
    assert result.message == "Archie has finished weaving. Scanned: 1, Skipped: 0."
    assert llm.calls[0]["json_mode"] is True
    assert 'Chapter Title: "Arrival"' in llm.calls[0]["messages"][1]["content"]

    profile = store.load_profile(PROJECT_ID, "elias")
    assert profile.name == "Elias"
    assert [fact.fact for fact in profile.canonical_facts] == ["Elias is a doctor"]
    assert profile.canonical_facts[0].chapter_id == "1"
    assert profile.timeline[0].chapter_title == "Arrival"
    assert [(entry.id, entry.name) for entry in store.load_index(PROJECT_ID)] == [("elias", "Elias")]


def test_second_sweep_skips_unchanged_chapters(store):
    seed_project(store, chapters=("1", "2"))
    engine, llm = make_engine(store, [extraction_reply(ELIAS), extraction_reply()])
    engine.sweep(PROJECT_ID)
    profile_before = store.load_profile(PROJECT_ID, "elias")

    result = engine.sweep(PROJECT_ID)

    assert (result.scanned, result.skipped, result.failed) == (0, 2, 0)
    assert len(llm.calls) == 2
    assert store.load_profile(PROJECT_ID, "elias") == profile_before


def test_changed_chapter_is_rescanned(store):
    seed_project(store)
    engine, llm = make_engine(store, [extraction_reply(ELIAS), extraction_reply(ELIAS)])
    engine.sweep(PROJECT_ID)

    store.save_chapter(PROJECT_ID, "1", paragraph_doc("A rewritten chapter."))
    result = engine.sweep(PROJECT_ID)

    assert result.scanned == 1
    assert len(llm.calls) == 2


def test_duplicate_fact_is_not_added_twice(store):
    seed_project(store, chapters=("1", "2"))
    repeated = dict(ELIAS, newFacts=["Elias is a doctor", "Elias limps"])
    engine, _ = make_engine(store, [extraction_reply(ELIAS), extraction_reply(repeated)])

    engine.sweep(PROJECT_ID)

    profile = store.load_profile(PROJECT_ID, "elias")
    assert [fact.fact for fact in profile.canonical_facts] == ["Elias is a doctor", "Elias limps"]
    assert [fact.chapter_id for fact in profile.canonical_facts] == ["1", "2"]


def test_timeline_entry_is_replaced_for_same_chapter():
    chapter = ManifestNode(id="3", type="chapter", title="Fever")
    profile = EntityProfile(id="elias", name="Elias")
    merge_extracted_entity(profile, ExtractedEntity(name="Elias", type="character", status="Sick"), chapter)
    merge_extracted_entity(profile, ExtractedEntity(name="Elias", type="character", status="Recovering"), chapter)

    assert len(profile.timeline) == 1
    assert profile.timeline[0].status == "Recovering"


def test_timeline_is_kept_in_numeric_chapter_order():
    profile = EntityProfile(id="elias", name="Elias")
    for chapter_id in ("10", "2", "1"):
        merge_extracted_entity(
            profile,
            ExtractedEntity(name="Elias", type="character"),
            ManifestNode(id=chapter_id, type="chapter", title=f"Chapter {chapter_id}"),
        )
    assert [entry.chapter_id for entry in profile.timeline] == ["1", "2", "10"]


def test_malformed_payload_is_absorbed_and_retried_next_time(store):
    seed_project(store, chapters=("1", "2"))
    engine, llm = make_engine(store, ["this is not json", extraction_reply(ELIAS)])

    result = engine.sweep(PROJECT_ID)

    assert (result.scanned, result.failed) == (2, 1)
    assert result.failed_chapters == ["1"]
    assert result.message.endswith("Failed: 1.")
    assert "1" not in store.load_sweep_metadata(PROJECT_ID)
    assert "2" in store.load_sweep_metadata(PROJECT_ID)

    llm.replies.append(extraction_reply())
    retry = engine.sweep(PROJECT_ID)
    assert (retry.scanned, retry.skipped, retry.failed) == (1, 1, 0)


def test_llm_failure_is_absorbed_per_chapter(store):
    seed_project(store, chapters=("1", "2"))
    engine, _ = make_engine(store, [UpstreamFailure("timeout"), extraction_reply(ELIAS)])

    result = engine.sweep(PROJECT_ID)

    assert result.failed == 1
    assert store.find_profile(PROJECT_ID, "elias") is not None


def test_unusable_entities_are_dropped_and_the_rest_kept(store):
    seed_project(store)
    engine, llm = make_engine(store, [extraction_reply(
        ELIAS,
        dict(ELIAS, name="!!!"),
        {"name": "The Great Fire", "type": "event", "newFacts": ["It burned for a week"]},
        {"name": "Ash", "type": "animal", "status": "Barks"},
    )])

    result = engine.sweep(PROJECT_ID)

    assert (result.scanned, result.failed) == (1, 0)
    assert sorted(entry.id for entry in store.load_index(PROJECT_ID)) == ["ash", "elias"]
    assert store.load_profile(PROJECT_ID, "ash").type == "character"
    assert store.find_profile(PROJECT_ID, "the-great-fire") is None

    # The chapter is marked, so an unchanged chapter costs no further call
    assert engine.sweep(PROJECT_ID).skipped == 1
    assert len(llm.calls) == 1


def test_malformed_chapter_does_not_stop_the_sweep(store):
    seed_project(store, chapters=("2",))
    store.save_chapter(PROJECT_ID, "1", {"type": "doc", "content": ["oops", {"type": "paragraph", "content": 7}]})
    store.save_chapter(PROJECT_ID, "3", ["not", "a", "document"])
    engine, _ = make_engine(store, [extraction_reply(ELIAS)])

    result = engine.sweep(PROJECT_ID)

    assert result.failed == 1
    assert result.failed_chapters == ["3"]
    assert store.find_profile(PROJECT_ID, "elias") is not None
    assert set(store.load_sweep_metadata(PROJECT_ID)) == {"1", "2"}


def test_resweeping_a_changed_chapter_keeps_one_fact_and_one_entry(store):
    seed_project(store, chapters=("3",))
    engine, _ = make_engine(store, [
        extraction_reply(dict(ELIAS, status="Falls ill")),
        extraction_reply(dict(ELIAS, status="Recovering", motivation="Rest")),
    ])
    engine.sweep(PROJECT_ID)

    store.save_chapter(PROJECT_ID, "3", paragraph_doc("Fever, revised."))
    result = engine.sweep(PROJECT_ID)

    assert result.scanned == 1
    profile = store.load_profile(PROJECT_ID, "elias")
    assert [fact.fact for fact in profile.canonical_facts] == ["Elias is a doctor"]
    assert len(profile.timeline) == 1
    assert profile.timeline[0].chapter_id == "3"
    assert (profile.timeline[0].status, profile.timeline[0].motivation) == ("Recovering", "Rest")
    assert profile.timeline[0].chapter_title == "Fever"


def test_missing_and_empty_chapters(store):
    seed_project(store, chapters=())
    store.save_chapter(PROJECT_ID, "2", {"type": "doc", "content": []})
    engine, llm = make_engine(store, [])

    result = engine.sweep(PROJECT_ID)

    assert (result.scanned, result.skipped, result.failed) == (0, 0, 0)
    assert llm.calls == []
    assert list(store.load_sweep_metadata(PROJECT_ID)) == ["2"]


def test_missing_manifest_aborts_the_sweep(store):
    engine, _ = make_engine(store, [])
    with pytest.raises(NotFoundError):
        engine.sweep(PROJECT_ID)


def test_type_synonyms_are_normalized(store):
    seed_project(store)
    engine, _ = make_engine(store, [extraction_reply(
        {"name": "The Clinic", "type": "Location", "status": None, "newFacts": None},
    )])

    engine.sweep(PROJECT_ID)

    profile = store.load_profile(PROJECT_ID, "the-clinic")
    assert profile.type == "place"
    assert profile.timeline[0].status == ""
