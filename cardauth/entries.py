"""Declarative reading and writing of configuration entries.

An :class:`Entry` names an option, says what type it has and how it is to be
handled.  :func:`parse_entries` fills each entry's ``value`` from a block and
:func:`write_entries` stores entry values into a block.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from .config import Block, Config, ItemType, join_list

__all__ = ["EntryType", "EntryFlag", "Entry", "EntryError", "parse_entries", "write_entries"]

log = logging.getLogger(__name__)


class EntryType(enum.IntEnum):
    """How an entry's value is read or written."""

    CALLBACK = 1
    BLOCK = 2
    LIST = 3
    BOOLEAN = 11
    INTEGER = 12
    STRING = 13


class EntryFlag(enum.IntFlag):
    """Behaviour flags of an entry."""

    NONE = 0
    PRESENT = 0x01
    MANDATORY = 0x02
    ALLOC = 0x04
    ALL_BLOCKS = 0x08
    VERBOSE = 0x10


class EntryError(Exception):
    """Raised when an entry is missing or cannot be decoded or encoded."""


@dataclass
class Entry:
    """Description of one configuration option.

    ``parm`` holds the sub-entries of a ``BLOCK`` entry or the function of a
    ``CALLBACK`` entry, called as ``parm(config, block, entry, depth)``; a
    true result means failure.  ``arg`` holds the names of a block to write.
    ``value`` receives what was read and supplies what is written.
    """

    name: str
    type: Any
    flags: EntryFlag = EntryFlag.NONE
    parm: Any = None
    arg: Any = None
    value: Any = None

    def __post_init__(self) -> None:
        self.flags = EntryFlag(self.flags)
        try:
            self.type = EntryType(self.type)
        except ValueError:
            pass

    @property
    def present(self) -> bool:
        """True once the entry has been handled successfully."""
        return bool(self.flags & EntryFlag.PRESENT)


def _blocks_for(config: Config, block: Block, entry: Entry) -> Optional[list[Block]]:
    blocks = block.find_blocks(entry.name)
    if blocks:
        if config.debug:
            log.debug("block found (%s)", entry.name)
        return blocks
    if block.find_list(entry.name) is not None:
        if config.debug:
            log.debug("list found (%s)", entry.name)
        return [block]
    return None


def _verbose(entry: Entry, text: Any) -> None:
    if entry.flags & EntryFlag.VERBOSE:
        print(f"{entry.name} = {text}")


def _parse_type(config: Config, block: Block, entry: Entry, depth: int) -> None:
    if config.debug:
        log.debug("decoding '%s'", entry.name)
    kind = entry.type
    failed = False
    if kind is EntryType.CALLBACK:
        if entry.parm is not None:
            failed = bool(entry.parm(config, block, entry, depth))
    elif kind is EntryType.BLOCK:
        if entry.parm:
            _parse_entries(config, block, entry.parm, depth + 1)
    elif kind is EntryType.LIST:
        values = block.find_list(entry.name)
        if values is None:
            failed = True
        else:
            entry.value = list(values) if entry.flags & EntryFlag.ALLOC else values
            _verbose(entry, join_list(values, ", ") or "")
    elif kind is EntryType.BOOLEAN:
        entry.value = block.get_bool(entry.name, False)
        _verbose(entry, "true" if entry.value else "false")
    elif kind is EntryType.INTEGER:
        entry.value = block.get_int(entry.name, 0)
        _verbose(entry, entry.value)
    elif kind is EntryType.STRING:
        text = block.get_str(entry.name, None)
        if not text:
            failed = True
        else:
            entry.value = text
            _verbose(entry, text)
    else:
        log.error("invalid configuration type: %s", kind)
    if failed:
        raise EntryError(f"decoding of configuration entry '{entry.name}' failed.")
    entry.flags |= EntryFlag.PRESENT


def _parse_entries(config: Config, block: Block, entries: Sequence[Entry], depth: int) -> None:
    if config.debug:
        log.debug("parse_entries called, depth %d", depth)
    for entry in entries:
        blocks = _blocks_for(config, block, entry)
        if not blocks:
            if not entry.flags & EntryFlag.MANDATORY:
                if config.debug:
                    log.debug("optional configuration entry '%s' not present", entry.name)
                continue
            raise EntryError(f"mandatory configuration entry '{entry.name}' not found")
        for found in blocks:
            _parse_type(config, found, entry, depth)
            if not entry.flags & EntryFlag.ALL_BLOCKS:
                break


def parse_entries(config: Config, block: Optional[Block], entries: Optional[Sequence[Entry]]) -> None:
    """Read ``entries`` from ``block`` (the root block by default)."""
    if entries is None:
        raise ValueError("no entries given")
    _parse_entries(config, block if block is not None else config.root, entries, 0)


def _write_type(config: Config, block: Block, entry: Entry, depth: int) -> None:
    if config.debug:
        log.debug("encoding '%s'", entry.name)
    kind = entry.type
    failed = False
    if kind is EntryType.CALLBACK:
        if entry.parm is not None:
            failed = bool(entry.parm(config, block, entry, depth))
    elif kind is EntryType.BLOCK:
        if entry.parm:
            sub = block.add_block(entry.name, entry.arg)
            _write_entries(config, sub, entry.parm, depth + 1)
    elif kind is EntryType.LIST:
        if entry.value is not None:
            block.add_item(ItemType.VALUE, entry.name, list(entry.value))
            _verbose(entry, join_list(entry.value, ", ") or "")
    elif kind is EntryType.BOOLEAN:
        if entry.value is not None:
            block.put_bool(entry.name, bool(entry.value))
            _verbose(entry, "true" if entry.value else "false")
    elif kind is EntryType.INTEGER:
        if entry.value is not None:
            block.put_int(entry.name, entry.value)
            _verbose(entry, int(entry.value))
    elif kind is EntryType.STRING:
        if entry.value is not None:
            block.put_str(entry.name, entry.value)
            _verbose(entry, entry.value)
    else:
        log.error("invalid configuration type: %s", kind)
    if failed:
        raise EntryError(f"encoding of configuration entry '{entry.name}' failed.")
    entry.flags |= EntryFlag.PRESENT


def _write_entries(config: Config, block: Block, entries: Sequence[Entry], depth: int) -> None:
    if config.debug:
        log.debug("write_entries called, depth %d", depth)
    for entry in entries:
        _write_type(config, block, entry, depth)


def write_entries(config: Config, block: Optional[Block], entries: Optional[Sequence[Entry]]) -> None:
    """Store the values of ``entries`` into ``block`` (the root block by default)."""
    if entries is None:
        raise ValueError("no entries given")
    _write_entries(config, block if block is not None else config.root, entries, 0)