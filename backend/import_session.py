"""Two-phase GEDCOM import: stage a parsed graph, then commit it around a home person."""

import logging
import re
from enum import Enum

from pydantic import BaseModel, Field

from archive_store import ArchiveStore
from errors import AnchorNotFoundError, PersistenceError, SessionStateError
from family_graph import IdGenerator, TimestampIdGenerator, find_person, parse_family_graph
from models import Circle, FamilyGraph, FamilyTree
from narrative import generate_event_entries

logger = logging.getLogger("familyarchive.import")


class ImportState(str, Enum):
    IDLE = "idle"
    STAGED = "staged"
    COMMITTED = "committed"
    DISCARDED = "discarded"


class CommitResult(BaseModel):
    """What a commit produced. Warnings list persistence writes that failed."""
    graph: FamilyGraph
    tree: FamilyTree
    circle: Circle
    warnings: list[str] = Field(default_factory=list)


def label_from_filename(filename: str) -> str:
    """'smith_family-2024.ged' -> 'smith family 2024'."""
    name = re.sub(r"\.(ged|gedcom|txt)$", "", filename, flags=re.IGNORECASE)
    return re.sub(r"[_-]", " ", name).strip()


class ImportSession:
    """
    Holds at most one staged import for a user.

    States: idle -> staged -> committed, or staged -> discarded. Staging again
    while staged replaces the previous graph, which never reaches the store.
    """

    def __init__(
        self,
        user_id: str,
        store: ArchiveStore,
        id_generator: IdGenerator | None = None,
        depth_bound: int | None = None,
    ):
        self.user_id = user_id
        self.store = store
        self.depth_bound = depth_bound
        self._new_id = id_generator or TimestampIdGenerator()
        self._state = ImportState.IDLE
        self._graph: FamilyGraph | None = None
        self._label = ""

    @property
    def state(self) -> ImportState:
        return self._state

    @property
    def staged_graph(self) -> FamilyGraph | None:
        return self._graph

    @property
    def label(self) -> str:
        return self._label

    # ------------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------------

    def upload(self, content: str, filename: str = "") -> FamilyGraph:
        """
        Parse GEDCOM text and stage the result.

        A parse failure propagates (MalformedInputError or
        UnrecognizedStructureError) and leaves the session unchanged.
        """
        logger.info(f"Parsing GEDCOM upload {filename!r} for user {self.user_id}")
        graph = parse_family_graph(content, self.user_id, self.depth_bound, id_generator=self._new_id)
        self.stage(graph, label_from_filename(filename))
        return graph

    def stage(self, graph: FamilyGraph, label: str = "") -> None:
        """Hold a parsed graph until a home person is chosen."""
        if self._state is ImportState.STAGED:
            logger.info(f"Replacing staged import {self._label!r} with {label!r}")
        self._graph = graph
        self._label = label
        self._state = ImportState.STAGED
        logger.info(f"Staged import {label!r} with {len(graph.persons)} people")

    def discard(self) -> None:
        """Drop any staged data without touching the store."""
        if self._graph is not None:
            logger.info(f"Discarded staged import {self._label!r}")
        self._graph = None
        self._label = ""
        self._state = ImportState.DISCARDED

    def commit(self, anchor_person_id: str) -> CommitResult:
        """
        Commit the staged graph with ``anchor_person_id`` as the home person.

        Existing persons win over staged persons with the same id. The tree,
        persons and circle are written independently; a failed write is
        reported in CommitResult.warnings rather than rolled back.

        Raises:
            SessionStateError: nothing is staged
            AnchorNotFoundError: the anchor is not in the staged graph
            PersistenceError: the existing archive could not be loaded
        """
        if self._state is not ImportState.STAGED or self._graph is None:
            raise SessionStateError(f"Cannot commit an import in state '{self._state.value}'")

        anchor = find_person(self._graph, anchor_person_id)
        if anchor is None:
            raise AnchorNotFoundError(f"Person {anchor_person_id!r} is not part of the staged import")

        graph = self._graph.model_copy(update={"anchor_id": anchor.id})

        existing_persons = self.store.load_persons(self.user_id)
        existing_trees = self.store.load_trees(self.user_id)
        existing_circles = self.store.load_circles(self.user_id)

        existing_ids = {person.id for person in existing_persons}
        survivors = [person for person in graph.persons if person.id not in existing_ids]
        dropped = len(graph.persons) - len(survivors)
        if dropped:
            logger.info(f"Skipped {dropped} staged people whose ids already exist")

        tree = FamilyTree(
            id=self._new_id("tree"),
            user_id=self.user_id,
            name=f"The {anchor.name} Archive",
            home_person_id=anchor.id,
            member_ids=graph.person_ids(),
        )

        circle_id = self._new_id("circle")
        circle = Circle(
            id=circle_id,
            user_id=self.user_id,
            tree_id=tree.id,
            name=self._label or f"The {anchor.name} Circle",
            description=f"Family circle for {tree.name}. Share memories, photos, and stories.",
            posts=generate_event_entries(graph.persons, circle_id, self.user_id, id_generator=self._new_id),
        )

        warnings = []
        self._write("persons", lambda: self.store.save_persons(self.user_id, existing_persons + survivors), warnings)
        self._write("family tree", lambda: self.store.save_trees(self.user_id, [tree] + existing_trees), warnings)
        self._write("circle", lambda: self.store.save_circles(self.user_id, [circle] + existing_circles), warnings)

        self._graph = None
        self._label = ""
        self._state = ImportState.COMMITTED

        logger.info(f"Committed '{tree.name}' with {len(survivors)} new people and "
                    f"{len(circle.posts)} event entries")
        return CommitResult(graph=graph, tree=tree, circle=circle, warnings=warnings)

    @staticmethod
    def _write(what: str, write, warnings: list[str]) -> None:
        try:
            write()
        except PersistenceError as e:
            logger.error(f"Could not save {what}: {e}")
            warnings.append(f"Could not save {what}: {e}")
