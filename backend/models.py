"""Data models for parsed records, imported people and the circle feed."""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now_iso() -> str:
    """Current time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


class ArchiveModel(BaseModel):
    """Base for stored records: camelCase keys in JSON, snake_case in Python."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Parsed GEDCOM Records
# ============================================================================

class RawRecord(BaseModel):
    """One line of a GEDCOM file together with its nested sub-records."""
    level: int
    xref: str | None = None
    tag: str
    value: str = ""
    children: list["RawRecord"] = Field(default_factory=list)

    def sub_records(self, tag: str) -> list["RawRecord"]:
        return [child for child in self.children if child.tag == tag]

    def sub_record(self, tag: str) -> "RawRecord | None":
        for child in self.children:
            if child.tag == tag:
                return child
        return None

    def sub_value(self, tag: str) -> str:
        """Value of the first sub-record with ``tag``, or an empty string."""
        child = self.sub_record(tag)
        return child.value.strip() if child else ""

    def text(self) -> str:
        """Value with CONC/CONT continuation lines folded in."""
        text = self.value
        for child in self.children:
            if child.tag == "CONC":
                text += child.value
            elif child.tag == "CONT":
                text += "\n" + child.value
        return text


# ============================================================================
# Event Types
# ============================================================================

class EventType(str, Enum):
    """Canonical life event labels, with OTHER for everything else."""
    BIRTH = "Birth"
    DEATH = "Death"
    BURIAL = "Burial"
    MARRIAGE = "Marriage"
    DIVORCE = "Divorce"
    BAPTISM = "Baptism"
    CHRISTENING = "Christening"
    CREMATION = "Cremation"
    RESIDENCE = "Residence"
    CENSUS = "Census"
    GRADUATION = "Graduation"
    OCCUPATION = "Occupation"
    NATURALIZATION = "Naturalization"
    IMMIGRATION = "Arrival/Immigration"
    EMIGRATION = "Departure/Emigration"
    MILITARY = "Military"
    RETIREMENT = "Retirement"
    WILL = "Will"
    PROBATE = "Probate"
    EDUCATION = "Education"
    ADOPTION = "Adoption"
    OTHER = "Other"

    @classmethod
    def from_label(cls, label: str | None) -> "EventType":
        """Resolve a free-form event label; unknown labels map to OTHER."""
        if not label:
            return cls.OTHER
        wanted = label.strip().lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        return _EVENT_LABEL_ALIASES.get(wanted, cls.OTHER)


_EVENT_LABEL_ALIASES = {
    "immigration": EventType.IMMIGRATION,
    "arrival": EventType.IMMIGRATION,
    "emigration": EventType.EMIGRATION,
    "departure": EventType.EMIGRATION,
    "military service": EventType.MILITARY,
}


class PostKind(str, Enum):
    MEMORY = "memory"
    EVENT = "event"


# ============================================================================
# Dates
# ============================================================================

class ExactDate(ArchiveModel):
    kind: Literal["exact"] = "exact"
    exact_date: str  # YYYY-MM-DD


class YearMonthDate(ArchiveModel):
    kind: Literal["yearMonth"] = "yearMonth"
    year: str
    month: str  # 1-12, not zero padded


class YearDate(ArchiveModel):
    kind: Literal["year"] = "year"
    year: str


class RangeDate(ArchiveModel):
    kind: Literal["range"] = "range"
    start_date: str = ""
    end_date: str = ""


class UnknownDate(ArchiveModel):
    kind: Literal["unknown"] = "unknown"


DateValue = Annotated[
    Union[ExactDate, YearMonthDate, YearDate, RangeDate, UnknownDate],
    Field(discriminator="kind"),
]


# ============================================================================
# People
# ============================================================================

class MediaItem(ArchiveModel):
    id: str
    name: str
    kind: Literal["photo", "video", "audio", "document"]
    url: str
    mime: str | None = None
    size: int | None = None
    created_at: str = Field(default_factory=utc_now_iso)


class LifeEvent(ArchiveModel):
    """One dated occurrence in a person's life, as recorded in the source."""
    id: str
    type: str
    date: str = ""  # raw GEDCOM date token, normalised on demand
    place: str = ""
    spouse_name: str | None = None
    media: list[MediaItem] = Field(default_factory=list)


class Memory(ArchiveModel):
    id: str
    type: Literal["story", "note"]
    content: str
    timestamp: str


class PersonNode(ArchiveModel):
    """A family member with relationship links to other PersonNode ids."""
    id: str
    user_id: str
    name: str
    gender: Literal["M", "F", "U"] | None = None
    birth_year: str = ""
    death_year: str | None = None
    image_url: str = ""
    summary: str = ""
    timeline: list[LifeEvent] = Field(default_factory=list)
    memories: list[Memory] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    is_memorial: bool = False
    parent_ids: list[str] = Field(default_factory=list)
    child_ids: list[str] = Field(default_factory=list)
    spouse_ids: list[str] = Field(default_factory=list)


class FamilyGraph(BaseModel):
    """Result of one GEDCOM import: the people within the depth bound."""
    persons: list[PersonNode]
    root_id: str
    depth_bound: int
    anchor_id: str | None = None
    generations: dict[str, int] = Field(default_factory=dict)

    def person_ids(self) -> list[str]:
        return [person.id for person in self.persons]


class FamilyTree(ArchiveModel):
    id: str
    user_id: str
    name: str
    created_at: str = Field(default_factory=utc_now_iso)
    home_person_id: str
    member_ids: list[str] = Field(default_factory=list)


# ============================================================================
# Circle Feed
# ============================================================================

class NarrativeEntry(ArchiveModel):
    """A feed post. System generated entries have post_kind EVENT."""
    id: str
    circle_id: str
    author_id: str
    author_name: str
    created_at: str = Field(default_factory=utc_now_iso)
    title: str
    body: str
    people_ids: list[str] = Field(default_factory=list)
    when: DateValue = Field(default_factory=UnknownDate)
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    comments: list[dict[str, Any]] = Field(default_factory=list)
    post_kind: PostKind = PostKind.MEMORY
    imported_by: str | None = None


class Circle(ArchiveModel):
    """Per-tree social feed container."""
    id: str
    user_id: str
    tree_id: str
    name: str
    description: str = ""
    created_at: str = Field(default_factory=utc_now_iso)
    posts: list[NarrativeEntry] = Field(default_factory=list)
