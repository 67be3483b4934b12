"""
Tests for the blob store backends and the project document layout.
"""
import pytest

from neyasbook.errors import InvalidRequestError, NotFoundError, UpstreamFailure
from neyasbook.models import EntityProfile, Manifest
from neyasbook.storage import validate_id
from neyasbook.storage.blob_store import validate_key

from conftest import PROJECT_ID, paragraph_doc


@pytest.mark.parametrize("key", ["", "/etc/passwd", "a/../b", "a//b", "./a", "a\\b", "a/"])
def test_unsafe_keys_are_rejected(key):
    with pytest.raises(InvalidRequestError):
        validate_key(key)


@pytest.mark.parametrize("value", ["..", "a/b", "", ".hidden", "a..b"])
def test_unsafe_ids_are_rejected(value):
    with pytest.raises(InvalidRequestError):
        validate_id(value)


def test_ids_may_start_with_dash():
    assert validate_id("-mad-jack") == "-mad-jack"


def test_local_read_write_list_delete(blob_store):
    blob_store.write("projects/p/manifest.json", b"{}")
    blob_store.write("projects/p/chapters/1.json", b"[]")
    blob_store.write("other/x.json", b"1")

    assert blob_store.read("projects/p/manifest.json") == b"{}"
    assert blob_store.exists("projects/p/chapters/1.json")
    assert blob_store.list("projects/") == ["projects/p/chapters/1.json", "projects/p/manifest.json"]

    blob_store.delete("projects/p/chapters/1.json")
    blob_store.delete("projects/p/chapters/1.json")
    assert not blob_store.exists("projects/p/chapters/1.json")
    with pytest.raises(NotFoundError):
        blob_store.read("projects/p/chapters/1.json")


def test_write_overwrites(blob_store):
    blob_store.write("k.json", b"one")
    blob_store.write("k.json", b"two")
    assert blob_store.read("k.json") == b"two"
    assert blob_store.list("") == ["k.json"]


def test_project_lifecycle(store):
    store.create_project(PROJECT_ID, "The Voss Affair", "A plague story")
    manifest = store.load_manifest(PROJECT_ID)
    assert [chapter.id for chapter in manifest.chapters()] == ["1"]
    assert manifest.hierarchy[0].title == "Volume I"

    projects = store.list_projects()
    assert [(p.id, p.title, p.description) for p in projects] == [
        (PROJECT_ID, "The Voss Affair", "A plague story"),
    ]

    store.save_chapter(PROJECT_ID, "1", paragraph_doc("Hello"))
    assert store.delete_project(PROJECT_ID) == 2
    assert store.list_projects() == []
    with pytest.raises(NotFoundError):
        store.delete_project(PROJECT_ID)


def test_chapter_marker_follows_content(store):
    store.save_chapter(PROJECT_ID, "1", paragraph_doc("Hello"))
    first = store.chapter_marker(PROJECT_ID, "1")
    assert store.chapter_marker(PROJECT_ID, "1") == first

    store.save_chapter(PROJECT_ID, "1", paragraph_doc("Hello again"))
    assert store.chapter_marker(PROJECT_ID, "1") != first


def test_defaults_for_absent_documents(store):
    assert store.load_index(PROJECT_ID) == []
    assert store.load_transcript(PROJECT_ID).messages == []
    assert store.load_sweep_metadata(PROJECT_ID) == {}
    assert store.find_profile(PROJECT_ID, "elias") is None
    with pytest.raises(NotFoundError):
        store.load_manifest(PROJECT_ID)


def test_index_entry_is_refreshed_on_rename(store):
    profile = EntityProfile(id="elias", name="Elias", type="character")
    assert store.upsert_index_entry(PROJECT_ID, profile) is True
    assert store.upsert_index_entry(PROJECT_ID, profile) is False

    profile.name = "Dr. Elias"
    assert store.upsert_index_entry(PROJECT_ID, profile) is True
    assert [(e.id, e.name) for e in store.load_index(PROJECT_ID)] == [("elias", "Dr. Elias")]


def test_legacy_profiles_with_bare_string_facts(store, blob_store):
    blob_store.write(
        store.profile_key(PROJECT_ID, "elias"),
        b'{"id": "elias", "name": "Elias", "canonicalFacts": ["Elias is a doctor"]}',
    )
    profile = store.load_profile(PROJECT_ID, "elias")
    assert profile.canonical_facts[0].fact == "Elias is a doctor"
    assert profile.canonical_facts[0].chapter_id is None


def test_corrupt_document_is_an_upstream_failure(store, blob_store):
    blob_store.write(store.manifest_key(PROJECT_ID), b"{not json")
    with pytest.raises(UpstreamFailure):
        store.load_manifest(PROJECT_ID)


def test_manifest_without_node_types_treats_leaves_as_chapters():
    manifest = Manifest.model_validate({
        "title": "Old",
        "hierarchy": [{"id": "p1", "children": [{"id": "1"}, {"id": "2"}]}],
    })
    assert [chapter.id for chapter in manifest.chapters()] == ["1", "2"]
