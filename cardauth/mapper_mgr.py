"""Chain of certificate-to-login mappers.

Mappers are configured in the ``pam_pkcs11`` block: ``use_mappers`` lists
their names in order, and an optional ``mapper <name> { ... }`` block holds
each mapper's settings.  A mapper without a block, without a ``module``
option or with ``module = internal`` is taken from the built-in mappers;
any other ``module`` value names an external mapper, looked up among the
registered external initialisers by that path.

An initialiser is called as ``init(block, name)`` and returns a
:class:`MapperModule`, or None when it fails.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Optional, TextIO

from .config import Block, Config

__all__ = ["MapperModule", "MapperInstance", "MapperChain"]

log = logging.getLogger(__name__)
_PACKAGE_LOGGER = logging.getLogger("cardauth")

MapperInit = Callable[[Optional[Block], str], Optional["MapperModule"]]


@contextmanager
def _debug_level(level: int) -> Iterator[None]:
    old = _PACKAGE_LOGGER.level
    _PACKAGE_LOGGER.setLevel(level)
    try:
        yield
    finally:
        _PACKAGE_LOGGER.setLevel(old)


@dataclass
class MapperModule:
    """What a mapper offers.

    ``finder(cert, context)`` returns ``(login, matched)``;
    ``matcher(cert, login, context)`` returns a positive number on a match,
    0 on no match and a negative number on error;
    ``entries(cert, context)`` returns the strings the mapper reads from the
    certificate; ``deinit(context)`` releases the mapper.
    """

    name: str = ""
    context: Any = None
    finder: Optional[Callable[[Any, Any], tuple[Optional[str], bool]]] = None
    matcher: Optional[Callable[[Any, str, Any], int]] = None
    entries: Optional[Callable[[Any, Any], Optional[list[str]]]] = None
    deinit: Optional[Callable[[Any], object]] = None
    dbg_level: int = logging.NOTSET


@dataclass
class MapperInstance:
    """A loaded mapper together with where it came from."""

    name: str
    module: MapperModule
    path: Optional[str] = None

    @property
    def is_static(self) -> bool:
        """True for a built-in mapper."""
        return self.path is None


class MapperChain:
    """An ordered list of mappers asked in turn about a certificate."""

    def __init__(
        self,
        static_mappers: Optional[Mapping[str, MapperInit]] = None,
        external_mappers: Optional[Mapping[str, MapperInit]] = None,
    ):
        self.static_mappers: dict[str, MapperInit] = dict(static_mappers or {})
        self.external_mappers: dict[str, MapperInit] = dict(external_mappers or {})
        self.instances: list[MapperInstance] = []

    def _init(self, init: MapperInit, block: Optional[Block], name: str) -> Optional[MapperModule]:
        old_level = _PACKAGE_LOGGER.level
        try:
            module = init(block, name)
            if module is not None:
                # keep the level the mapper chose for itself
                module.dbg_level = _PACKAGE_LOGGER.level
        finally:
            _PACKAGE_LOGGER.setLevel(old_level)
        return module

    def load_module(self, config: Config, name: str) -> Optional[MapperInstance]:
        """Load and initialise the mapper ``name``; None when that fails."""
        root = config.find_block("pam_pkcs11")
        if root is None:
            return None
        blocks = root.find_blocks("mapper", name)
        block = blocks[0] if blocks else None
        libname = None
        if block is None:
            log.debug("Mapper entry '%s' not found. Assume static module with default values", name)
        else:
            libname = block.get_str("module", None)

        if block is None or not libname or libname == "internal":
            log.debug("Loading static module for mapper '%s'", name)
            init = self.static_mappers.get(name)
            if init is None:
                log.debug("Static mapper '%s' not found", name)
                return None
            module = self._init(init, block, name)
            if module is None:
                log.debug("Static mapper %s init failed", name)
                return None
            return MapperInstance(name, module, None)

        log.debug("Loading dynamic module for mapper '%s'", name)
        init = self.external_mappers.get(libname)
        if init is None:
            log.debug("Module %s is not a mapper (path: %s)", name, libname)
            return None
        module = self._init(init, block, name)
        if module is None:
            log.debug("Module %s init failed", name)
            return None
        return MapperInstance(name, module, libname)

    def load(self, config: Config) -> list[MapperInstance]:
        """Build the chain from ``use_mappers``; mappers that fail are skipped."""
        self.instances = []
        root = config.find_block("pam_pkcs11")
        if root is None:
            log.debug("No pam_pkcs11 block in config file")
            return self.instances
        names = root.find_list("use_mappers")
        if not names:
            log.debug("No use_mappers entry found in config")
            return self.instances
        for name in names:
            instance = self.load_module(config, name)
            if instance is not None:
                log.debug("Inserting mapper [%s] into list", name)
                self.instances.append(instance)
        return self.instances

    def unload(self) -> None:
        """Release every mapper and empty the chain."""
        log.debug("unloading mapper module list")
        for instance in self.instances:
            module = instance.module
            if module.deinit is not None:
                with _debug_level(module.dbg_level):
                    module.deinit(module.context)
            if instance.is_static:
                log.debug("Module %s is static: don't remove", instance.name)
            else:
                log.debug("unloading module %s", instance.name)
        self.instances = []

    def find_user(self, cert: Any) -> Optional[str]:
        """Return the first login a mapper both finds and matches, or None."""
        if cert is None:
            return None
        for instance in self.instances:
            module = instance.module
            if module.finder is None:
                log.debug("Mapper '%s' has no find() function", instance.name)
                continue
            with _debug_level(module.dbg_level):
                login, matched = module.finder(cert, module.context)
            log.debug("Mapper '%s' found %s, matched %s", instance.name, login, matched)
            if login and matched:
                return login
        return None

    def match_user(self, cert: Any, login: Optional[str]) -> int:
        """Return the first positive match result for ``login``, or 0.

        Raises ValueError when no certificate is given.
        """
        if cert is None:
            raise ValueError("no certificate given")
        if login is None:
            return 0
        for instance in self.instances:
            module = instance.module
            result = 0
            if module.matcher is None:
                log.debug("Mapper '%s' has no match() function", instance.name)
            else:
                with _debug_level(module.dbg_level):
                    result = int(module.matcher(cert, login, module.context))
                log.debug("Mapper module %s match() returns %d", instance.name, result)
            if result > 0:
                return result
            if result < 0:
                log.debug("Error in module %s", instance.name)
        return 0

    def inspect(self, cert: Any, out: Optional[TextIO] = None) -> list[tuple[str, list[str]]]:
        """Print what each mapper reads from ``cert`` and return it."""
        if cert is None:
            return []
        stream = out if out is not None else sys.stdout
        found: list[tuple[str, list[str]]] = []
        for instance in self.instances:
            module = instance.module
            if module.entries is None:
                log.debug("Mapper '%s' has no inspect() function", instance.name)
                continue
            with _debug_level(module.dbg_level):
                data = module.entries(cert, module.context)
            if not data:
                log.debug("Cannot find cert data for mapper %s", instance.name)
                continue
            values = list(data)
            stream.write(f"Printing data for mapper {instance.name}:\n")
            for value in values:
                stream.write(f"{value}\n")
            found.append((instance.name, values))
        return found