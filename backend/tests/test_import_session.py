"""Tests for the two-phase GEDCOM import session."""

import os
import pytest
import sys

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from archive_store import ArchiveStore, MemoryKeyValueStore
from errors import (
    AnchorNotFoundError,
    MalformedInputError,
    PersistenceError,
    SessionStateError,
    UnrecognizedStructureError,
)
from family_graph import SequentialIdGenerator
from import_session import ImportSession, ImportState, label_from_filename
from models import FamilyTree, PersonNode

import config


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def sample_gedcom_content():
    """Text of the sample GEDCOM file."""
    path = os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
        "sample-family.ged"
    )
    with open(path, encoding="utf-8") as f:
        return f.read()


@pytest.fixture
def store():
    """Archive store over an in-memory key/value backend."""
    return ArchiveStore(MemoryKeyValueStore())


@pytest.fixture
def session(store):
    """Import session with deterministic ids."""
    return ImportSession("user_1", store, id_generator=SequentialIdGenerator(), depth_bound=4)


SINGLE_PERSON = "0 @I1@ INDI\n1 NAME Ann /Lee/\n1 BIRT\n2 DATE 1901\n2 PLAC Leeds"


class FailingKeyValueStore(MemoryKeyValueStore):
    """Memory store that rejects writes to some keys."""

    def __init__(self, failing_keys):
        super().__init__()
        self.failing_keys = set(failing_keys)

    def set(self, key, value):
        if key in self.failing_keys:
            raise PersistenceError(f"Storage quota exceeded writing '{key}'")
        super().set(key, value)


def person_named(graph, name):
    """Find a graph member by display name."""
    return next(person for person in graph.persons if person.name == name)


# ============================================================================
# Staging Tests
# ============================================================================

class TestStaging:
    """Tests for upload, stage and discard."""

    def test_initial_state(self, session):
        """Test a fresh session."""
        assert session.state is ImportState.IDLE
        assert session.staged_graph is None

    def test_upload_stages_graph(self, session, sample_gedcom_content):
        """Test that a parsed upload is held for review."""
        graph = session.upload(sample_gedcom_content, "smith_family.ged")

        assert session.state is ImportState.STAGED
        assert session.staged_graph is graph
        assert session.label == "smith family"
        assert len(graph.persons) == 5

    def test_failed_upload_keeps_state(self, session, sample_gedcom_content):
        """Test that a parse error changes nothing."""
        with pytest.raises(MalformedInputError):
            session.upload("garbage")
        assert session.state is ImportState.IDLE

        graph = session.upload(sample_gedcom_content)
        with pytest.raises(UnrecognizedStructureError):
            session.upload("0 HEAD\n0 TRLR")
        assert session.state is ImportState.STAGED
        assert session.staged_graph is graph

    def test_restage_replaces_graph(self, session, sample_gedcom_content):
        """Test that a second upload replaces the first."""
        session.upload(sample_gedcom_content, "first.ged")
        second = session.upload(SINGLE_PERSON, "second.ged")

        assert session.staged_graph is second
        assert session.label == "second"

    def test_discard(self, session, store, sample_gedcom_content):
        """Test that discarding drops staged data without writing."""
        session.upload(sample_gedcom_content)
        session.discard()

        assert session.state is ImportState.DISCARDED
        assert session.staged_graph is None
        assert store.load_persons("user_1") == []

        with pytest.raises(SessionStateError):
            session.commit("p_1")

    def test_stage_after_discard(self, session, sample_gedcom_content):
        """Test that a discarded session can stage again."""
        session.upload(sample_gedcom_content)
        session.discard()
        session.upload(SINGLE_PERSON)
        assert session.state is ImportState.STAGED

    def test_label_from_filename(self):
        """Test circle labels derived from file names."""
        assert label_from_filename("smith_family-2024.ged") == "smith family 2024"
        assert label_from_filename("Jones.GEDCOM") == "Jones"
        assert label_from_filename("") == ""


# ============================================================================
# Commit Tests
# ============================================================================

class TestCommit:
    """Tests for committing a staged import."""

    def test_commit(self, session, store, sample_gedcom_content):
        """Test the full commit flow."""
        graph = session.upload(sample_gedcom_content, "smith_family.ged")
        john = person_named(graph, "John Smith")

        result = session.commit(john.id)

        assert session.state is ImportState.COMMITTED
        assert session.staged_graph is None
        assert result.warnings == []
        assert result.graph.anchor_id == john.id

        assert result.tree.name == "The John Smith Archive"
        assert result.tree.home_person_id == john.id
        assert result.tree.member_ids == graph.person_ids()

        assert result.circle.tree_id == result.tree.id
        assert result.circle.name == "smith family"
        assert result.circle.description.startswith("Family circle for The John Smith Archive.")
        assert len(result.circle.posts) == 12

        assert [p.id for p in store.load_persons("user_1")] == graph.person_ids()
        assert [tree.id for tree in store.load_trees("user_1")] == [result.tree.id]
        assert [circle.id for circle in store.load_circles("user_1")] == [result.circle.id]

    def test_commit_without_label(self, session):
        """Test the default circle name."""
        graph = session.upload(SINGLE_PERSON)
        result = session.commit(graph.persons[0].id)
        assert result.circle.name == "The Ann Lee Circle"

    def test_commit_any_member_as_anchor(self, session, sample_gedcom_content):
        """Test that the home person need not be the root."""
        graph = session.upload(sample_gedcom_content)
        robert = person_named(graph, "Robert Smith")

        result = session.commit(robert.id)
        assert result.tree.home_person_id == robert.id
        assert result.tree.name == "The Robert Smith Archive"

    def test_unknown_anchor(self, session, store, sample_gedcom_content):
        """Test that an unknown anchor leaves the import staged."""
        session.upload(sample_gedcom_content)

        with pytest.raises(AnchorNotFoundError):
            session.commit("nonexistent")

        assert session.state is ImportState.STAGED
        assert store.load_persons("user_1") == []
        assert store.load_trees("user_1") == []

    def test_commit_without_staging(self, session):
        """Test commit in the idle state."""
        with pytest.raises(SessionStateError):
            session.commit("p_1")

    def test_commit_twice(self, session):
        """Test that a committed import cannot be committed again."""
        graph = session.upload(SINGLE_PERSON)
        session.commit(graph.persons[0].id)
        with pytest.raises(SessionStateError):
            session.commit(graph.persons[0].id)

    def test_replaced_import_never_persisted(self, session, store, sample_gedcom_content):
        """Test that only the latest staged graph reaches the store."""
        session.upload(sample_gedcom_content)
        second = session.upload(SINGLE_PERSON)

        session.commit(second.persons[0].id)

        assert [p.name for p in store.load_persons("user_1")] == ["Ann Lee"]

    def test_existing_persons_win(self, session, store, sample_gedcom_content):
        """Test that a staged person never overwrites a stored one."""
        graph = session.upload(sample_gedcom_content)
        clash_id = graph.persons[1].id
        store.save_persons("user_1", [PersonNode(id=clash_id, user_id="user_1", name="Existing")])

        result = session.commit(graph.persons[0].id)

        stored = store.load_persons("user_1")
        assert len(stored) == 5
        assert [p.name for p in stored if p.id == clash_id] == ["Existing"]
        # Narratives still cover the whole staged graph
        assert len(result.circle.posts) == 12

    def test_existing_trees_kept(self, session, store):
        """Test that new trees are added in front of existing ones."""
        store.save_trees("user_1", [FamilyTree(id="tree_old", user_id="user_1", name="Old", home_person_id="x")])
        graph = session.upload(SINGLE_PERSON)

        result = session.commit(graph.persons[0].id)

        assert [tree.id for tree in store.load_trees("user_1")] == [result.tree.id, "tree_old"]

    def test_other_users_untouched(self, store):
        """Test that two users importing into one store stay separate."""
        first = ImportSession("user_1", store, depth_bound=4)
        second = ImportSession("user_2", store, depth_bound=4)

        first.commit(first.upload(SINGLE_PERSON).persons[0].id)
        second.commit(second.upload(SINGLE_PERSON).persons[0].id)

        assert len(store.load_persons("user_1")) == 1
        assert len(store.load_persons("user_2")) == 1
        assert len(store.load_circles("user_1")) == 1


# ============================================================================
# Persistence Failure Tests
# ============================================================================

class TestPersistenceFailures:
    """Tests for writes rejected by the key/value store."""

    def test_circle_write_fails(self, sample_gedcom_content):
        """Test that a failed circle write is a warning, not an error."""
        backend = FailingKeyValueStore([config.STORAGE_KEYS["circles"]])
        store = ArchiveStore(backend)
        session = ImportSession("user_1", store, depth_bound=4)

        graph = session.upload(sample_gedcom_content)
        result = session.commit(graph.persons[0].id)

        assert session.state is ImportState.COMMITTED
        assert len(result.warnings) == 1
        assert "circle" in result.warnings[0]
        assert len(store.load_persons("user_1")) == 5
        assert [tree.id for tree in store.load_trees("user_1")] == [result.tree.id]
        assert store.load_circles("user_1") == []

    def test_person_write_fails(self, sample_gedcom_content):
        """Test that the tree is still saved when persons cannot be."""
        backend = FailingKeyValueStore([config.STORAGE_KEYS["profiles"]])
        store = ArchiveStore(backend)
        session = ImportSession("user_1", store, depth_bound=4)

        graph = session.upload(sample_gedcom_content)
        result = session.commit(graph.persons[0].id)

        assert len(result.warnings) == 1
        assert store.load_persons("user_1") == []
        assert [tree.id for tree in store.load_trees("user_1")] == [result.tree.id]
        assert [circle.id for circle in store.load_circles("user_1")] == [result.circle.id]

    def test_unreadable_archive(self, sample_gedcom_content):
        """Test that a corrupt archive aborts the commit before any write."""
        backend = MemoryKeyValueStore()
        backend.set(config.STORAGE_KEYS["profiles"], "{not json")
        session = ImportSession("user_1", ArchiveStore(backend), depth_bound=4)

        graph = session.upload(sample_gedcom_content)
        with pytest.raises(PersistenceError):
            session.commit(graph.persons[0].id)

        assert session.state is ImportState.STAGED
        assert backend.get(config.STORAGE_KEYS["family_trees"]) is None


# ============================================================================
# Run Tests
# ============================================================================

if __name__ == "__main__":
    pytest.main([__file__, "-v"])
