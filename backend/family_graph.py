"""Build a linked family graph from parsed GEDCOM records."""

import itertools
import logging
import random
import time
from collections import deque
from typing import Callable

import config
from errors import UnrecognizedStructureError
from gedcom_dates import extract_year
from gedcom_utils import find_records, parse_gedcom_content
from models import EventType, FamilyGraph, LifeEvent, PersonNode, RawRecord

logger = logging.getLogger("familyarchive.graph")

# Callable returning a fresh identifier for the given prefix ("p", "ev", ...)
IdGenerator = Callable[[str], str]

# GEDCOM event tags and the labels stored on LifeEvent.type
EVENT_TAG_LABELS = {
    "BIRT": EventType.BIRTH.value,
    "DEAT": EventType.DEATH.value,
    "BURI": EventType.BURIAL.value,
    "MARR": EventType.MARRIAGE.value,
    "DIV": EventType.DIVORCE.value,
    "BAPM": EventType.BAPTISM.value,
    "CHR": EventType.CHRISTENING.value,
    "CREM": EventType.CREMATION.value,
    "RESI": EventType.RESIDENCE.value,
    "CENS": EventType.CENSUS.value,
    "GRAD": EventType.GRADUATION.value,
    "OCCU": EventType.OCCUPATION.value,
    "NATU": EventType.NATURALIZATION.value,
    "IMMI": EventType.IMMIGRATION.value,
    "EMIG": EventType.EMIGRATION.value,
    "_MILT": EventType.MILITARY.value,
    "_MILI": EventType.MILITARY.value,
    "RETI": EventType.RETIREMENT.value,
    "WILL": EventType.WILL.value,
    "PROB": EventType.PROBATE.value,
    "EDUC": EventType.EDUCATION.value,
    "ADOP": EventType.ADOPTION.value,
    # Narrated with the generic template
    "CONF": "Confirmation",
    "FCOM": "First Communion",
    "ORDN": "Ordination",
    "BARM": "Bar Mitzvah",
    "BASM": "Bas Mitzvah",
    "BLES": "Blessing",
    "ENGA": "Engagement",
    "ANUL": "Annulment",
    "EVEN": "Event",
}

# Events recorded on FAM records and copied to both spouses
FAMILY_EVENT_TAGS = {"MARR", "DIV", "ENGA", "ANUL"}

PARENT_TAGS = ("HUSB", "WIFE")


# ============================================================================
# Identifier Generation
# ============================================================================

class TimestampIdGenerator:
    """Ids of the form ``<prefix>_<hex millis>_<hex random><counter>``.

    The random part has a fixed width, so the trailing counter keeps every id
    from one generator distinct even within the same millisecond.
    """

    def __init__(self):
        self._counter = itertools.count()

    def __call__(self, prefix: str) -> str:
        millis = int(time.time() * 1000)
        return f"{prefix}_{millis:x}_{random.getrandbits(48):012x}{next(self._counter):x}"


class SequentialIdGenerator:
    """Deterministic ids (``p_1``, ``ev_2``, ...) for tests and replays."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)

    def __call__(self, prefix: str) -> str:
        return f"{prefix}_{next(self._counter)}"


# ============================================================================
# Record Extraction
# ============================================================================

def _is_pointer(value: str) -> bool:
    return value.startswith("@") and value.endswith("@") and len(value) > 2


def _display_name(record: RawRecord) -> str:
    """Full name without GEDCOM surname slashes, e.g. 'John /Smith/' -> 'John Smith'."""
    name_record = record.sub_record("NAME")
    if name_record is None:
        return "Unknown"

    full_name = " ".join(name_record.value.replace("/", " ").split())
    if full_name:
        return full_name

    parts = [name_record.sub_value("GIVN"), name_record.sub_value("SURN")]
    return " ".join(part for part in parts if part) or "Unknown"


def _gender(record: RawRecord) -> str | None:
    sex = record.sub_value("SEX").upper()[:1]
    if not sex:
        return None
    return sex if sex in ("M", "F") else "U"


def _event_from_record(record: RawRecord, new_id: IdGenerator, spouse_name: str | None = None) -> LifeEvent | None:
    """LifeEvent for an event sub-record, or None when the tag is not an event."""
    label = EVENT_TAG_LABELS.get(record.tag)
    if label is None:
        return None
    if record.tag == "EVEN":
        label = record.sub_value("TYPE") or label

    return LifeEvent(
        id=new_id("ev"),
        type=label,
        date=record.sub_value("DATE"),
        place=record.sub_value("PLAC"),
        spouse_name=spouse_name,
    )


def _source_titles(record: RawRecord, sources_by_xref: dict[str, RawRecord]) -> list[str]:
    titles = []
    for citation in record.sub_records("SOUR"):
        value = citation.value.strip()
        if _is_pointer(value):
            source = sources_by_xref.get(value)
            value = source.sub_value("TITL") if source else ""
        if value and value not in titles:
            titles.append(value)
    return titles


def _person_from_record(
    record: RawRecord,
    owner_id: str,
    new_id: IdGenerator,
    sources_by_xref: dict[str, RawRecord],
) -> PersonNode:
    """Create a PersonNode (without relationships) from an INDI record."""
    timeline = []
    for child in record.children:
        event = _event_from_record(child, new_id)
        if event is not None:
            timeline.append(event)

    notes = [note.text().strip() for note in record.sub_records("NOTE") if not _is_pointer(note.value.strip())]

    birth = record.sub_record("BIRT")
    death = record.sub_record("DEAT")

    return PersonNode(
        id=new_id("p"),
        user_id=owner_id,
        name=_display_name(record),
        gender=_gender(record),
        birth_year=extract_year(birth.sub_value("DATE")) if birth else "",
        death_year=(extract_year(death.sub_value("DATE")) or None) if death else None,
        summary="\n\n".join(note for note in notes if note),
        timeline=timeline,
        sources=_source_titles(record, sources_by_xref),
    )


# ============================================================================
# Relationship Linking
# ============================================================================

def _add_unique(ids: list[str], value: str) -> None:
    if value not in ids:
        ids.append(value)


def _resolve(family: RawRecord, tags: tuple[str, ...], xref_to_id: dict[str, str]) -> list[str]:
    resolved = []
    for member in family.children:
        if member.tag not in tags:
            continue
        person_id = xref_to_id.get(member.value.strip())
        if person_id is None:
            logger.debug(f"Family {family.xref}: unresolved {member.tag} reference {member.value!r}")
            continue
        _add_unique(resolved, person_id)
    return resolved


def _link_family(
    family: RawRecord,
    persons: dict[str, PersonNode],
    xref_to_id: dict[str, str],
    new_id: IdGenerator,
) -> None:
    """Apply one FAM record: parent/child links, spouse links and family events."""
    parent_ids = _resolve(family, PARENT_TAGS, xref_to_id)
    child_ids = _resolve(family, ("CHIL",), xref_to_id)

    for parent_id in parent_ids:
        for child_id in child_ids:
            if parent_id == child_id:
                continue
            _add_unique(persons[parent_id].child_ids, child_id)
            _add_unique(persons[child_id].parent_ids, parent_id)

    for first, second in itertools.combinations(parent_ids, 2):
        _add_unique(persons[first].spouse_ids, second)
        _add_unique(persons[second].spouse_ids, first)

    for event_record in family.children:
        if event_record.tag not in FAMILY_EVENT_TAGS:
            continue
        for parent_id in parent_ids:
            partners = [persons[other].name for other in parent_ids if other != parent_id]
            event = _event_from_record(event_record, new_id, spouse_name=partners[0] if partners else None)
            persons[parent_id].timeline.append(event)


def _generation_distances(persons: dict[str, PersonNode], root_id: str, depth_bound: int) -> dict[str, int]:
    """
    Generation distance of every person within ``depth_bound`` of the root.

    Parent and child links cost one generation, spouse links cost none
    (0-1 breadth-first search). Distances only ever decrease and are capped
    by the bound, so cyclic input terminates.
    """
    distances = {root_id: 0}
    queue = deque([root_id])

    while queue:
        person_id = queue.popleft()
        person = persons[person_id]
        distance = distances[person_id]

        links = [(spouse_id, 0) for spouse_id in person.spouse_ids]
        links += [(relative_id, 1) for relative_id in person.parent_ids + person.child_ids]

        for relative_id, cost in links:
            candidate = distance + cost
            if candidate > depth_bound or relative_id not in persons:
                continue
            if relative_id in distances and distances[relative_id] <= candidate:
                continue
            distances[relative_id] = candidate
            if cost == 0:
                queue.appendleft(relative_id)
            else:
                queue.append(relative_id)

    return distances


# ============================================================================
# Graph Building
# ============================================================================

def build_family_graph(
    records: list[RawRecord],
    owner_id: str,
    depth_bound: int,
    id_generator: IdGenerator | None = None,
) -> FamilyGraph:
    """
    Build a FamilyGraph from a parsed GEDCOM record forest.

    Args:
        records: Top-level records from parse_gedcom_content()
        owner_id: User who owns the imported people
        depth_bound: Maximum generation distance from the root person
        id_generator: Id factory; defaults to a TimestampIdGenerator

    Returns:
        FamilyGraph whose persons are those within depth_bound of the first
        individual in the file

    Raises:
        UnrecognizedStructureError: when no INDI records are present
    """
    if depth_bound < 1:
        raise ValueError(f"depth_bound must be a positive integer, got {depth_bound}")

    new_id = id_generator or TimestampIdGenerator()

    individuals = find_records(records, "INDI")
    if not individuals:
        raise UnrecognizedStructureError("No individual (INDI) records found in GEDCOM content")

    sources_by_xref = {record.xref: record for record in find_records(records, "SOUR") if record.xref}

    # First pass: people and the xref -> id table
    persons: dict[str, PersonNode] = {}
    xref_to_id: dict[str, str] = {}
    for record in individuals:
        person = _person_from_record(record, owner_id, new_id, sources_by_xref)
        persons[person.id] = person
        if record.xref:
            if record.xref in xref_to_id:
                logger.warning(f"Duplicate individual reference {record.xref}, keeping the first")
            else:
                xref_to_id[record.xref] = person.id

    # Second pass: relationships from family records
    families = find_records(records, "FAM")
    for family in families:
        _link_family(family, persons, xref_to_id, new_id)

    root_id = next(iter(persons))
    generations = _generation_distances(persons, root_id, depth_bound)
    members = [person for person_id, person in persons.items() if person_id in generations]

    excluded = len(persons) - len(members)
    if excluded:
        logger.info(f"Excluded {excluded} individuals beyond {depth_bound} generations of the root person")
    logger.info(f"Built family graph with {len(members)} people from {len(individuals)} individuals "
                f"and {len(families)} families")

    return FamilyGraph(
        persons=members,
        root_id=root_id,
        depth_bound=depth_bound,
        generations=generations,
    )


def parse_family_graph(
    content: str,
    owner_id: str,
    depth_bound: int | None = None,
    id_generator: IdGenerator | None = None,
) -> FamilyGraph:
    """Parse GEDCOM text and build its FamilyGraph in one step."""
    records = parse_gedcom_content(content)
    return build_family_graph(
        records,
        owner_id,
        depth_bound if depth_bound is not None else config.DEFAULT_DEPTH_BOUND,
        id_generator=id_generator,
    )


# ============================================================================
# Family Relationship Helpers
# ============================================================================

def find_person(graph: FamilyGraph, person_id: str) -> PersonNode | None:
    """Find a member of the graph by id."""
    for person in graph.persons:
        if person.id == person_id:
            return person
    return None


def _members(graph: FamilyGraph, person_ids: list[str]) -> list[PersonNode]:
    by_id = {person.id: person for person in graph.persons}
    return [by_id[person_id] for person_id in person_ids if person_id in by_id]


def get_parents(graph: FamilyGraph, person_id: str) -> list[PersonNode]:
    person = find_person(graph, person_id)
    return _members(graph, person.parent_ids) if person else []


def get_children(graph: FamilyGraph, person_id: str) -> list[PersonNode]:
    person = find_person(graph, person_id)
    return _members(graph, person.child_ids) if person else []


def get_spouses(graph: FamilyGraph, person_id: str) -> list[PersonNode]:
    person = find_person(graph, person_id)
    return _members(graph, person.spouse_ids) if person else []
