"""
Selection evaluator: decides whether a vault item belongs to a queue.

Pure functions only. Called for every item on a bulk sync and for every
create event, so nothing here touches the store or the file system.

Membership = included(criteria) AND NOT excluded(exclusions).
Exclusion rules are OR-ed: any single rule firing excludes the item.
"""

from dataclasses import dataclass, field

from mnemo.application.utils.text import frontmatter_tags, normalize_tag
from mnemo.domain.constants import MARKDOWN_SUFFIX
from mnemo.domain.models import (
    CustomCriteria,
    FolderCriteria,
    PropertyMatch,
    SelectionCriteria,
    Settings,
    TagCriteria,
)
from mnemo.domain.ports import ItemMetadata, VaultItem


@dataclass(frozen=True)
class ExclusionRules:
    """Global exclusions, applied on top of every queue's criteria."""

    names: frozenset[str] = frozenset()
    tags: tuple[str, ...] = ()
    properties: tuple[PropertyMatch, ...] = field(default_factory=tuple)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExclusionRules":
        return cls(
            names=frozenset(n.lower() for n in settings.excluded_note_names),
            tags=tuple(normalize_tag(t) for t in settings.excluded_tags if normalize_tag(t)),
            properties=tuple(settings.excluded_properties),
        )

    @property
    def empty(self) -> bool:
        return not (self.names or self.tags or self.properties)


# ---------- Path helpers ----------


def _normalize_folder(folder: str) -> str:
    normalized = folder.strip().strip("/")
    return "" if normalized in ("", ".") else normalized


def is_in_folder(item_path: str, folder: str) -> bool:
    """True if `item_path` sits in `folder` or any descendant. '' is the vault root."""
    folder = _normalize_folder(folder)
    if folder == "":
        return True
    item_folder = item_path.rsplit("/", 1)[0] if "/" in item_path else ""
    return item_folder == folder or item_folder.startswith(folder + "/")


# ---------- Tag helpers ----------


def extract_tags(metadata: ItemMetadata | None) -> list[str]:
    """All tags on an item (frontmatter and inline), normalized, without duplicates."""
    if metadata is None:
        return []
    raw = frontmatter_tags(metadata.frontmatter) + list(metadata.inline_tags)
    seen: dict[str, None] = {}
    for tag in raw:
        normalized = normalize_tag(tag)
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)


def tag_matches(note_tag: str, wanted: str) -> bool:
    """Exact or hierarchical match: 'lang/python' matches wanted 'lang'."""
    return note_tag == wanted or note_tag.startswith(wanted + "/")


def _has_any_tag(note_tags: list[str], wanted_tags: list[str]) -> bool:
    return any(tag_matches(n, w) for w in wanted_tags for n in note_tags)


# ---------- Inclusion ----------


def is_included(
    item: VaultItem, metadata: ItemMetadata | None, criteria: SelectionCriteria
) -> bool:
    if not item.path.lower().endswith(MARKDOWN_SUFFIX):
        return False

    match criteria:
        case FolderCriteria(folders=folders):
            if not folders:
                return False
            return any(is_in_folder(item.path, f) for f in folders)
        case TagCriteria(tags=tags):
            wanted = [normalize_tag(t) for t in tags if normalize_tag(t)]
            if not wanted:
                return False
            return _has_any_tag(extract_tags(metadata), wanted)
        case CustomCriteria():
            # Reserved for user-defined criteria; nothing matches yet.
            return False
        case _:
            raise TypeError(f"Unknown criteria type: {type(criteria).__name__}")


# ---------- Exclusion ----------


def property_matches(frontmatter: dict | None, prop: PropertyMatch) -> bool:
    if not frontmatter:
        return False
    value = frontmatter.get(prop.key)
    wanted = prop.value.lower()

    if prop.operator == "exists":
        return value is not None
    if prop.operator == "equals":
        if isinstance(value, str):
            return value.lower() == wanted
        if isinstance(value, bool):
            return str(value).lower() == wanted
        return value is not None and str(value) == prop.value
    if prop.operator == "contains":
        if isinstance(value, str):
            return wanted in value.lower()
        if isinstance(value, list):
            return any(
                wanted in v.lower() if isinstance(v, str) else prop.value in str(v) for v in value
            )
        return False
    return False


def is_excluded(item: VaultItem, metadata: ItemMetadata | None, rules: ExclusionRules) -> bool:
    if rules.empty:
        return False

    if item.basename.lower() in rules.names:
        return True

    if rules.tags and _has_any_tag(extract_tags(metadata), list(rules.tags)):
        return True

    frontmatter = metadata.frontmatter if metadata else None
    return any(property_matches(frontmatter, p) for p in rules.properties)


def matches(
    item: VaultItem,
    metadata: ItemMetadata | None,
    criteria: SelectionCriteria,
    rules: ExclusionRules | None = None,
) -> bool:
    """Final membership decision. Exclusions always win over inclusion."""
    if rules is not None and is_excluded(item, metadata, rules):
        return False
    return is_included(item, metadata, criteria)
