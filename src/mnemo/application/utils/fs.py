from collections.abc import Iterator
from pathlib import Path

from mnemo.domain.constants import IGNORED_VAULT_DIRS, MARKDOWN_SUFFIX


def iter_markdown_files(root: Path) -> Iterator[Path]:
    """Yield every Markdown file under `root`, skipping dot-folders like .obsidian."""
    for p in sorted(root.rglob(f"*{MARKDOWN_SUFFIX}")):
        if not p.is_file():
            continue
        rel_parts = p.relative_to(root).parts[:-1]
        if any(part in IGNORED_VAULT_DIRS or part.startswith(".") for part in rel_parts):
            continue
        yield p


def to_vault_path(root: Path, path: Path) -> str:
    """Vault-relative POSIX path, the identifier used for items."""
    return path.relative_to(root).as_posix()
