"""In-memory model of the block-structured configuration format.

A configuration is a tree of blocks.  Each block holds an ordered list of
items: comments, nested blocks and ``key = value, value;`` entries.  Keys are
matched case-insensitively.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

__all__ = ["ItemType", "Item", "Block", "Config", "join_list"]

_STRTOL = re.compile(r"\s*([+-]?)(0[xX][0-9a-fA-F]+|0[0-7]*|[1-9][0-9]*)")


def _strtol(text: str) -> int:
    """Parse the leading integer of ``text`` with automatic base detection."""
    match = _STRTOL.match(text)
    if not match:
        return 0
    sign, digits = match.groups()
    if digits[:2].lower() == "0x":
        number = int(digits[2:], 16)
    elif len(digits) > 1 and digits.startswith("0"):
        number = int(digits, 8)
    else:
        number = int(digits)
    return -number if sign == "-" else number


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return a is not None and b is not None and a.lower() == b.lower()


class ItemType(enum.IntEnum):
    """Kind of an entry inside a block."""

    COMMENT = 0
    BLOCK = 1
    VALUE = 2


@dataclass
class Item:
    """One entry of a block: a comment, a sub-block or a list of values."""

    type: ItemType
    key: Optional[str] = None
    value: Union[None, str, "Block", list[str]] = None

    def copy(self, parent: Optional["Block"] = None) -> "Item":
        if self.type is ItemType.BLOCK and isinstance(self.value, Block):
            sub = self.value.copy()
            sub.parent = parent
            return Item(self.type, self.key, sub)
        if self.type is ItemType.VALUE:
            return Item(self.type, self.key, list(self.value or []))
        return Item(self.type, self.key, self.value)


@dataclass
class Block:
    """A named group of items; the root block of a file has no name."""

    name: list[str] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)
    parent: Optional["Block"] = field(default=None, compare=False, repr=False)

    @property
    def first_name(self) -> str:
        """The block's first name, or an empty string when it has none."""
        return self.name[0] if self.name else ""

    def find_block(self, name: str) -> Optional["Block"]:
        """Return the first sub-block whose key matches ``name``."""
        if name is None:
            return None
        for item in self.items:
            if item.type is ItemType.BLOCK and _same(name, item.key):
                return item.value
        return None

    def find_blocks(self, name: str, key: Optional[str] = None) -> list["Block"]:
        """Return all sub-blocks with key ``name`` and, if given, first name ``key``."""
        if name is None:
            return []
        found = []
        for item in self.items:
            if item.type is not ItemType.BLOCK or not _same(name, item.key):
                continue
            if key is not None and not _same(key, item.value.first_name):
                continue
            found.append(item.value)
        return found

    def find_list(self, option: str) -> Optional[list[str]]:
        """Return the value list stored under ``option``, or None."""
        for item in self.items:
            if item.type is ItemType.VALUE and _same(option, item.key):
                return item.value
        return None

    def get_str(self, option: str, default: Optional[str] = None) -> Optional[str]:
        """Return the first value of ``option`` or ``default``."""
        values = self.find_list(option)
        return values[0] if values else default

    def get_int(self, option: str, default: int = 0) -> int:
        """Return the first value of ``option`` as an integer, or ``default``."""
        values = self.find_list(option)
        return _strtol(values[0]) if values else default

    def get_bool(self, option: str, default: bool = False) -> bool:
        """Return True when the first value starts with T or Y (any case)."""
        values = self.find_list(option)
        if not values:
            return default
        return values[0][:1].upper() in ("T", "Y")

    def put_str(self, option: str, value: str) -> str:
        """Add ``value`` under ``option``, appending to an existing entry."""
        self.add_item(ItemType.VALUE, option, [value])
        return value

    def put_int(self, option: str, value: int) -> int:
        self.put_str(option, str(int(value)))
        return value

    def put_bool(self, option: str, value: bool) -> bool:
        self.put_str(option, "true" if value else "false")
        return value

    def add_item(self, item_type: ItemType, key: Optional[str], data) -> Item:
        """Add an item to this block and return it.

        A value item whose key already exists is extended rather than
        duplicated; blocks are copied before being attached.
        """
        if data is None:
            raise ValueError("item data is required")
        item_type = ItemType(item_type)
        if item_type is ItemType.VALUE:
            existing = next(
                (i for i in self.items if i.type is ItemType.VALUE and _same(key, i.key)),
                None,
            )
            if existing is not None:
                existing.value = list(existing.value or []) + list(data)
                return existing
            item = Item(ItemType.VALUE, key, list(data))
        elif item_type is ItemType.BLOCK:
            block = data.copy()
            block.parent = self
            item = Item(ItemType.BLOCK, key, block)
        else:
            item = Item(ItemType.COMMENT, key, str(data))
        self.items.append(item)
        return item

    def add_block(self, key: str, name: Optional[Iterable[str]] = None) -> "Block":
        """Create a new empty sub-block and return it."""
        names = list(name or []) or [""]
        block = Block(name=names, parent=self)
        self.items.append(Item(ItemType.BLOCK, key, block))
        return block

    def copy(self) -> "Block":
        """Return a deep copy of this block, detached from any parent."""
        clone = Block(name=list(self.name))
        clone.items = [item.copy(clone) for item in self.items]
        return clone


class Config:
    """A configuration tree together with the file it belongs to."""

    def __init__(self, filename: Optional[str] = None, debug: bool = False):
        self.filename = filename
        self.debug = debug
        self.root = Block()
        self.errmsg: Optional[str] = None

    def find_block(self, name: str, block: Optional[Block] = None) -> Optional[Block]:
        """Find a sub-block of ``block`` (the root by default)."""
        return (block or self.root).find_block(name)

    def find_blocks(
        self, name: str, key: Optional[str] = None, block: Optional[Block] = None
    ) -> list[Block]:
        """Find sub-blocks of ``block`` (the root by default)."""
        return (block or self.root).find_blocks(name, key)


def join_list(values: Optional[Iterable[str]], filler: Optional[str] = None) -> Optional[str]:
    """Join values with ``filler``; None for an empty or missing list."""
    values = list(values or [])
    if not values:
        return None
    return (filler or "").join(values)