import re
from typing import Any

import yaml  # type: ignore

# ---------- Frontmatter helpers ----------


def parse_frontmatter(md_text: str) -> tuple[dict[str, Any], str]:
    """Parse YAML frontmatter from markdown text.
    Uses line-by-line parsing instead of regex for reliability.
    """
    # Handle potential BOM (Byte Order Mark)
    md_text = md_text.lstrip("\ufeff")

    lines = md_text.split("\n")

    # Check for opening ---
    if not lines or lines[0].strip() != "---":
        return {}, md_text

    # Find closing ---
    yaml_end_line = None
    for i, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            yaml_end_line = i
            break

    if yaml_end_line is None:
        # No closing ---, return empty
        return {}, md_text

    raw = "\n".join(lines[1:yaml_end_line])
    body = "\n".join(lines[yaml_end_line + 1 :])

    # Fix tabs (common user error)
    if "\t" in raw:
        raw = raw.replace("\t", "  ")

    try:
        meta = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        return {"__yaml_error__": str(e)}, body

    if not isinstance(meta, dict):
        return {}, body
    return meta, body


# ---------- Tags ----------

_FENCED_CODE_RE = re.compile(r"^(```|~~~).*?^\1", re.DOTALL | re.MULTILINE)
_INLINE_CODE_RE = re.compile(r"`[^`\n]*`")
# Obsidian tags: '#' not preceded by a word char or '#', body of letters,
# digits, '_', '-', '/', and at least one non-digit character.
_INLINE_TAG_RE = re.compile(r"(?<![\w#&/])#([\w\-/]*[^\W\d][\w\-/]*)", re.UNICODE)


def normalize_tag(tag: str) -> str:
    """'#Topic/Sub' -> 'topic/sub'"""
    return tag.strip().lstrip("#").strip("/").lower()


def extract_inline_tags(body: str) -> list[str]:
    """Find inline #tags in a note body, ignoring code spans and fenced blocks."""
    text = _FENCED_CODE_RE.sub("", body)
    text = _INLINE_CODE_RE.sub("", text)
    return [f"#{m.group(1)}" for m in _INLINE_TAG_RE.finditer(text)]


def frontmatter_tags(meta: dict[str, Any]) -> list[str]:
    """Tags declared in frontmatter via `tags` (list or comma/space string) or `tag`."""
    out: list[str] = []
    for key in ("tags", "tag"):
        value = meta.get(key)
        if isinstance(value, list):
            out.extend(str(v) for v in value if isinstance(v, (str, int)) and str(v).strip())
        elif isinstance(value, str):
            out.extend(t for t in re.split(r"[,\s]+", value) if t)
    return out
