"""Serialise a configuration tree back to text."""

from __future__ import annotations

import logging
import string
from typing import Iterable, Iterator, Optional

from .config import Block, Config, ItemType

__all__ = ["needs_quotes", "format_list", "render", "write_config"]

log = logging.getLogger(__name__)

_INDENT = "\t"
_PLAIN = frozenset(string.ascii_letters + string.digits + "!./")


def needs_quotes(value: str) -> bool:
    """True when ``value`` holds a character other than ASCII alnum, ``!``, ``.`` or ``/``."""
    return any(char not in _PLAIN for char in value)


def format_list(values: Optional[Iterable[str]]) -> str:
    """Join values with ``", "``, quoting those that need it."""
    return ", ".join(f'"{v}"' if needs_quotes(v) else v for v in values or [])


def _line(data: Optional[str], depth: int) -> str:
    return (_INDENT * depth + data if data else "") + "\n"


def _lines(block: Block, depth: int) -> Iterator[str]:
    for item in block.items:
        if item.type is ItemType.COMMENT:
            yield _line(item.value, depth)
        elif item.type is ItemType.BLOCK:
            sub = item.value
            if sub is None:
                log.warning("skipping invalid block")
                continue
            yield _line(f"{item.key or ''} {format_list(sub.name)} {{", depth)
            yield from _lines(sub, depth + 1)
            yield _line("}", depth)
        else:
            yield _line(f"{item.key or ''} = {format_list(item.value)};", depth)


def render(config: Config) -> str:
    """Return the text form of the whole configuration."""
    return "".join(_lines(config.root, 0))


def write_config(config: Config, filename: Optional[str] = None) -> None:
    """Write the configuration to ``filename`` (``config.filename`` by default)."""
    target = filename or config.filename
    if not target:
        raise ValueError("no file name to write the configuration to")
    with open(target, "w", encoding="utf-8", errors="surrogateescape", newline="") as handle:
        handle.write(render(config))