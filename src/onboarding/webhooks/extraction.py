"""Contact extraction from CRM webhook payloads.

The CRM puts the same logical field at different paths depending on the
trigger type. Each field is described by an ordered list of accessors tried
against the payload tree; the first non-empty value wins. Supporting a new
naming convention means adding one accessor to a list.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

Accessor = Callable[[Mapping[str, Any]], Any]

CONTACT_CONTAINERS: tuple[tuple[str, ...], ...] = (("contact",), ("data", "contact"), ("data",))


def path(*keys: str) -> Accessor:
    """Accessor for a nested key path, e.g. ``path("contact", "id")``."""

    def _get(tree: Mapping[str, Any]) -> Any:
        node: Any = tree
        for key in keys:
            if not isinstance(node, Mapping):
                return None
            node = node.get(key)
        return node

    return _get


def _custom_field_entries(node: Any) -> Iterable[tuple[str, Any]]:
    """Yield (name, value) pairs from the shapes custom fields arrive in."""
    if isinstance(node, Mapping):
        yield from node.items()
    elif isinstance(node, list):
        for entry in node:
            if not isinstance(entry, Mapping):
                continue
            name = entry.get("name") or entry.get("key") or entry.get("id")
            value = entry.get("value", entry.get("field_value"))
            if name:
                yield str(name), value


def custom_field(*names: str) -> Accessor:
    """Accessor for a named custom field, at the root or inside the contact object."""
    wanted = set(names)

    def _get(tree: Mapping[str, Any]) -> Any:
        for prefix in ((), *CONTACT_CONTAINERS):
            container = path(*prefix)(tree) if prefix else tree
            if not isinstance(container, Mapping):
                continue
            for key in ("customFields", "customData", "custom_fields"):
                for name, value in _custom_field_entries(container.get(key)):
                    if name in wanted and value:
                        return value
            for name in names:
                if container.get(name):
                    return container[name]
        return None

    return _get


_FULL_NAME_PATHS = [
    path("full_name"),
    path("fullName"),
    path("name"),
    path("contact", "full_name"),
    path("contact", "fullName"),
    path("contact", "name"),
    path("data", "contact", "name"),
]


def name_part(index: int) -> Accessor:
    """Accessor splitting a full name: 0 = first word, 1 = the rest."""

    def _get(tree: Mapping[str, Any]) -> Any:
        full = first_match(tree, _FULL_NAME_PATHS)
        if not full:
            return None
        parts = full.split()
        if index == 0:
            return parts[0]
        return " ".join(parts[1:]) or None

    return _get


def _in_contact(*keys: str) -> list[Accessor]:
    return [path(*prefix, *keys) for prefix in CONTACT_CONTAINERS]


CONTACT_ID_ACCESSORS: list[Accessor] = [
    path("contactId"),
    path("contact_id"),
    *_in_contact("id"),
    *_in_contact("contactId"),
    *_in_contact("contact_id"),
    path("id"),
]

EMAIL_ACCESSORS: list[Accessor] = [
    path("email"),
    path("Email"),
    custom_field("Email Additional", "email_additional"),
    *_in_contact("email"),
    *_in_contact("Email"),
]

FIRST_NAME_ACCESSORS: list[Accessor] = [
    path("firstName"),
    path("first_name"),
    *_in_contact("firstName"),
    *_in_contact("first_name"),
    name_part(0),
]

LAST_NAME_ACCESSORS: list[Accessor] = [
    path("lastName"),
    path("last_name"),
    *_in_contact("lastName"),
    *_in_contact("last_name"),
    name_part(1),
]

PHONE_ACCESSORS: list[Accessor] = [
    path("phone"),
    path("Phone"),
    *_in_contact("phone"),
]

EVENT_TYPE_ACCESSORS: list[Accessor] = [
    path("type"),
    path("event"),
    path("eventType"),
    path("event_type"),
]

TAG_ACCESSORS: list[Accessor] = [
    path("tags"),
    *_in_contact("tags"),
]


def _text(value: Any) -> str | None:
    if value is None or isinstance(value, (Mapping, list, bool)):
        return None
    text = str(value).strip()
    return text or None


def first_match(tree: Mapping[str, Any], accessors: Iterable[Accessor]) -> str | None:
    """Return the first non-empty text value produced by ``accessors``."""
    for accessor in accessors:
        value = _text(accessor(tree))
        if value:
            return value
    return None


def _tag_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [t.strip() for t in value.split(",") if t.strip()]
    if isinstance(value, list):
        return [str(t).strip() for t in value if isinstance(t, (str, int)) and str(t).strip()]
    return []


@dataclass
class ContactPayload:
    """Normalized contact fields from one webhook delivery."""

    contact_id: str | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    event_type: str | None = None
    # The tag this delivery is about, when the payload names one
    trigger_tag: str | None = None
    tags: list[str] = field(default_factory=list)

    @property
    def has_tag_info(self) -> bool:
        return bool(self.trigger_tag or self.tags)

    def missing_required(self) -> list[str]:
        """Fields required to create an invited user."""
        required = {"email": self.email, "firstName": self.first_name, "lastName": self.last_name}
        return [name for name, value in required.items() if not value]


def extract_contact(payload: Mapping[str, Any]) -> ContactPayload:
    tags: list[str] = []
    for accessor in TAG_ACCESSORS:
        for tag in _tag_list(accessor(payload)):
            if tag not in tags:
                tags.append(tag)

    email = first_match(payload, EMAIL_ACCESSORS)
    return ContactPayload(
        contact_id=first_match(payload, CONTACT_ID_ACCESSORS),
        email=email.lower() if email else None,
        first_name=first_match(payload, FIRST_NAME_ACCESSORS),
        last_name=first_match(payload, LAST_NAME_ACCESSORS),
        phone=first_match(payload, PHONE_ACCESSORS),
        event_type=first_match(payload, EVENT_TYPE_ACCESSORS),
        trigger_tag=first_match(payload, [path("tag"), path("tagName")]),
        tags=tags,
    )


def received_keys(payload: Mapping[str, Any]) -> dict[str, list[str]]:
    """Keys actually present, echoed back so misconfigured CRM workflows can be debugged."""
    contact: Any = {}
    for prefix in CONTACT_CONTAINERS:
        candidate = path(*prefix)(payload)
        if isinstance(candidate, Mapping):
            contact = candidate
            break
    return {
        "receivedPayloadKeys": sorted(payload.keys()),
        "receivedContactKeys": sorted(contact.keys()),
    }
