# dbproxy/models/projection.py
"""
Reader for the PostgREST ``select`` projection string.

Only enough of the grammar is understood to tell which names a projection
reaches: plain columns (optionally aliased, cast or JSON-pathed) and embedded
resources ``[...][alias:]table[!hint](...)``, nested to any depth. Anything
that does not fit is rejected rather than guessed at.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class ProjectedField:
    name: str  # column, or the target table of an embed
    alias: Optional[str] = None
    children: Optional[Tuple["ProjectedField", ...]] = None

    @property
    def embedded(self) -> bool:
        return self.children is not None

    @property
    def key(self) -> str:
        """Name of this entry in the returned row."""
        return self.alias or self.column

    @property
    def column(self) -> str:
        return self.name.split("::", 1)[0].strip()


def _split_top_level(text: str) -> List[str]:
    parts: List[str] = []
    depth = start = 0
    for i, ch in enumerate(text):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                raise ValueError("unbalanced ')' in select")
        elif ch == "," and depth == 0:
            parts.append(text[start:i])
            start = i + 1
    if depth:
        raise ValueError("unbalanced '(' in select")
    parts.append(text[start:])
    return parts


def _split_alias(head: str) -> Tuple[Optional[str], str]:
    idx = head.find(":")
    # "col::text" is a cast, not an alias
    if idx < 0 or head.startswith("::", idx):
        return None, head
    alias = head[:idx].strip()
    if not alias:
        raise ValueError(f"empty alias in select entry '{head.strip()}'")
    return alias, head[idx + 1 :]


def _parse_entry(raw: str) -> ProjectedField:
    entry = raw.strip()
    if not entry:
        raise ValueError("select has an empty entry")
    if '"' in entry:
        raise ValueError("quoted names are not supported in select")
    if entry.startswith("..."):
        entry = entry[3:]

    paren = entry.find("(")
    alias, name = _split_alias(entry if paren < 0 else entry[:paren])
    name = name.strip()
    if paren < 0:
        if not name:
            raise ValueError(f"select entry '{raw.strip()}' names no column")
        return ProjectedField(name=name, alias=alias)

    if not entry.endswith(")"):
        raise ValueError(f"unexpected text after ')' in select entry '{raw.strip()}'")
    table = name.split("!", 1)[0].strip()
    if not table:
        raise ValueError(f"select entry '{raw.strip()}' names no table")
    children = tuple(_parse_entry(p) for p in _split_top_level(entry[paren + 1 : -1]))
    return ProjectedField(name=table, alias=alias, children=children)


def parse_projection(text: Optional[str]) -> Tuple[ProjectedField, ...]:
    """Parse a projection; blank or ``None`` means every column."""
    if text is None or not text.strip():
        return ()
    return tuple(_parse_entry(p) for p in _split_top_level(text))


def iter_embeds(fields: Tuple[ProjectedField, ...]) -> Iterator[ProjectedField]:
    for f in fields:
        if f.embedded:
            yield f
            yield from iter_embeds(f.children or ())


def embed_targets(fields: Tuple[ProjectedField, ...]) -> Dict[str, str]:
    """Every name a filter/order column may use as a prefix -> embedded table."""
    targets: Dict[str, str] = {}
    for f in iter_embeds(fields):
        targets.setdefault(f.name, f.name)
        if f.alias:
            targets[f.alias] = f.name
    return targets
