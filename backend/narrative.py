"""Turn imported life events into chronologically ordered circle feed entries."""

import logging

import config
from family_graph import IdGenerator, TimestampIdGenerator
from gedcom_dates import date_sort_key, date_to_display, date_value_sort_key, format_readable
from models import EventType, LifeEvent, NarrativeEntry, PersonNode, PostKind

logger = logging.getLogger("familyarchive.narrative")


# ============================================================================
# Sentence Templates
# ============================================================================

# Placeholders:
#   {name}      person's display name
#   {spouse}    spouse name, or "their spouse"
#   {when}      " on <date> in <place>", degrading to whichever part is known
#   {on}        " on <date>"
#   {in_place}  " in <place>"
#   {in_date}   " in <date>"
#   {type}      the raw event label
#   {detail}    the {when} clause after a dash, for the generic template
SENTENCE_TEMPLATES: dict[EventType, str] = {
    EventType.BIRTH: "{name} was born{when}.",
    EventType.DEATH: "{name} passed away{when}.",
    EventType.BURIAL: "{name} was laid to rest{when}.",
    EventType.MARRIAGE: "{name} and {spouse} were married{on}{in_place}.",
    EventType.DIVORCE: "{name} and {spouse} divorced{in_date}.",
    EventType.BAPTISM: "{name} was baptised{when}.",
    EventType.CHRISTENING: "{name} was baptised{when}.",
    EventType.CREMATION: "{name} was cremated{when}.",
    EventType.RESIDENCE: "{name} was recorded as residing{in_place}{on}.",
    EventType.CENSUS: "{name} appeared in a census record{when}.",
    EventType.GRADUATION: "{name} graduated{when}.",
    EventType.OCCUPATION: "{name} was recorded as working{in_place}{on}.",
    EventType.NATURALIZATION: "{name} became a naturalised citizen{when}.",
    EventType.IMMIGRATION: "{name} immigrated{when}.",
    EventType.EMIGRATION: "{name} emigrated{when}.",
    EventType.MILITARY: "{name} served in the military{when}.",
    EventType.RETIREMENT: "{name} retired{when}.",
    EventType.WILL: "{name}'s will was recorded{when}.",
    EventType.PROBATE: "The estate of {name} entered probate{when}.",
    EventType.EDUCATION: "{name} was enrolled in education{when}.",
    EventType.ADOPTION: "{name} was adopted{when}.",
    EventType.OTHER: "{name}: {type}{detail}.",
}


def event_sentence(name: str, event: LifeEvent) -> str:
    """Natural-language sentence for one life event of the named person."""
    date_label = format_readable(event.date)
    place = event.place.strip()

    if date_label and place:
        when = f"on {date_label} in {place}"
    elif date_label:
        when = f"on {date_label}"
    elif place:
        when = f"in {place}"
    else:
        when = ""

    template = SENTENCE_TEMPLATES[EventType.from_label(event.type)]
    return template.format(
        name=name,
        spouse=event.spouse_name or "their spouse",
        when=f" {when}" if when else "",
        on=f" on {date_label}" if date_label else "",
        in_place=f" in {place}" if place else "",
        in_date=f" in {date_label}" if date_label else "",
        type=event.type,
        detail=f" — {when}" if when else "",
    )


def event_title(name: str, event: LifeEvent) -> str:
    """Entry title: 'A & B married, <date>' or 'Name — Type, <date>'."""
    if EventType.from_label(event.type) is EventType.MARRIAGE and event.spouse_name:
        title = f"{name} & {event.spouse_name} married"
    else:
        title = f"{name} — {event.type}"

    date_label = format_readable(event.date)
    return f"{title}, {date_label}" if date_label else title


def marriage_key(name: str, spouse_name: str, date: str) -> tuple[str, str, str]:
    """Order-independent identity of a marriage recorded on both spouses."""
    first, second = sorted((name, spouse_name))
    return first, second, date


# ============================================================================
# Feed Generation
# ============================================================================

def _people_ids(person: PersonNode, event: LifeEvent, persons_by_id: dict[str, PersonNode]) -> list[str]:
    people_ids = [person.id]
    if event.spouse_name:
        for spouse_id in person.spouse_ids:
            spouse = persons_by_id.get(spouse_id)
            if spouse is not None and spouse.name == event.spouse_name:
                people_ids.append(spouse_id)
                break
    return people_ids


def generate_event_entries(
    persons: list[PersonNode],
    circle_id: str,
    user_id: str,
    id_generator: IdGenerator | None = None,
) -> list[NarrativeEntry]:
    """
    Generate one feed entry per narratable life event, oldest first.

    Events with neither a date nor a place are skipped. A marriage recorded on
    both spouses yields a single entry. Entries are ordered by date sort key;
    ties keep the order in which events were encountered.
    """
    new_id = id_generator or TimestampIdGenerator()
    persons_by_id = {person.id: person for person in persons}
    seen_marriages = set()
    keyed_entries = []
    skipped = 0

    for person in persons:
        for event in person.timeline:
            if EventType.from_label(event.type) is EventType.MARRIAGE and event.spouse_name:
                key = marriage_key(person.name, event.spouse_name, event.date)
                if key in seen_marriages:
                    continue
                seen_marriages.add(key)

            if not event.date and not event.place:
                skipped += 1
                continue

            entry = NarrativeEntry(
                id=new_id("ep"),
                circle_id=circle_id,
                author_id=config.SYSTEM_AUTHOR_ID,
                author_name=config.SYSTEM_AUTHOR_NAME,
                title=event_title(person.name, event),
                body=event_sentence(person.name, event),
                people_ids=_people_ids(person, event, persons_by_id),
                when=date_to_display(event.date),
                post_kind=PostKind.EVENT,
                imported_by=user_id,
            )
            keyed_entries.append((date_sort_key(event.date), entry))

    keyed_entries.sort(key=lambda pair: pair[0])
    entries = [entry for _, entry in keyed_entries]

    logger.info(f"Generated {len(entries)} event entries for circle {circle_id} "
                f"({skipped} events without date or place skipped)")
    return entries


def feed_order(entries: list[NarrativeEntry]) -> list[NarrativeEntry]:
    """Chronological order for a mixed feed of event and memory entries."""
    return sorted(entries, key=lambda entry: date_value_sort_key(entry.when))
