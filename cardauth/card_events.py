"""Card insertion and removal events from PC/SC reader state changes."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping, Optional, Sequence, Union

from .config import Block, Config
from .parser import ConfigParseError, parse_file

__all__ = ["ReaderState", "CardEventSettings", "load_settings", "ReaderTracker"]

log = logging.getLogger(__name__)

DEF_TIMEOUT = 1000
DEF_CONFIG_FILE = "/etc/pam_pkcs11/card_eventmgr.conf"

USAGE = (
    "Usage card_eventmgr [[no]debug] [[no]daemon] [timeout=<timeout>] "
    "[timeout_limit=<limit>] [config_file=<file>] [kill] [pidfile=<file>]\n"
    f"Defaults: debug=0 daemon=0 timeout={DEF_TIMEOUT} (ms) timeout_limit=0 (none) "
    f"config_file={DEF_CONFIG_FILE}"
)

_INT_ARG = re.compile(r"\s*([+-]?\d+)")


class ReaderState(enum.IntFlag):
    """State bits reported for a card reader."""

    UNAWARE = 0x0000
    IGNORE = 0x0001
    CHANGED = 0x0002
    UNKNOWN = 0x0004
    UNAVAILABLE = 0x0008
    EMPTY = 0x0010
    PRESENT = 0x0020
    ATRMATCH = 0x0040
    EXCLUSIVE = 0x0080
    INUSE = 0x0100
    MUTE = 0x0200
    UNPOWERED = 0x0400


@dataclass
class CardEventSettings:
    """Options of the card reader event manager."""

    timeout: int = DEF_TIMEOUT
    timeout_limit: int = 0
    daemonize: bool = False
    debug: bool = False
    kill: bool = False
    pidfile: Optional[str] = None
    config_file: str = DEF_CONFIG_FILE
    config: Optional[Config] = None
    root: Optional[Block] = None


def _int_option(arg: str, prefix: str, current: int) -> int:
    if not arg.startswith(prefix):
        return current
    match = _INT_ARG.match(arg, len(prefix))
    return int(match.group(1)) if match else current


def load_settings(argv=None) -> CardEventSettings:
    """Read the configuration file, then let command-line options override it.

    ``argv`` holds the options without the program name.  Raises
    :class:`ConfigParseError` when the file cannot be used and
    :class:`ValueError` on an unknown option.
    """
    args = list(argv or [])
    settings = CardEventSettings()
    if "debug" in args:
        settings.debug = True
    for arg in args:
        if "config_file=" in arg:
            settings.config_file = arg.split("=", 1)[1]
            break

    config = Config(settings.config_file)
    parse_file(config)
    root = config.find_block("card_eventmgr")
    if root is None:
        raise ConfigParseError(
            f"card_eventmgr block not found in config: '{settings.config_file}'"
        )
    settings.config = config
    settings.root = root
    settings.debug = root.get_bool("debug", settings.debug)
    settings.daemonize = root.get_bool("daemon", settings.daemonize)
    settings.timeout = root.get_int("timeout", settings.timeout)
    settings.timeout_limit = root.get_int("timeout_limit", 0)

    for arg in args:
        if arg == "daemon":
            settings.daemonize = True
        elif arg == "nodaemon":
            settings.daemonize = False
        elif arg == "kill":
            settings.kill = True
        elif "timeout=" in arg:
            settings.timeout = _int_option(arg, "timeout=", settings.timeout)
        elif "timeout_limit=" in arg:
            settings.timeout_limit = _int_option(arg, "timeout_limit=", settings.timeout_limit)
        elif "pidfile=" in arg:
            settings.pidfile = arg.split("=", 1)[1]
        elif "debug" in arg or "config_file=" in arg:
            continue
        else:
            raise ValueError(f"unknown option {arg}\n{USAGE}")

    if settings.debug:
        logging.getLogger("cardauth").setLevel(logging.DEBUG)
    return settings


StateInput = Union[Mapping[str, int], Sequence[int]]


class ReaderTracker:
    """Follow the state of each reader and turn changes into events.

    ``handler`` is called with ``card_insert`` or ``card_remove``.  The very
    first report, which only tells the initial state, fires nothing.  When a
    reader reports an unknown state, ``rescan_needed`` is set and the reader
    list should be fetched again and passed to :meth:`reset`.
    """

    def __init__(
        self,
        readers: Iterable[str] = (),
        handler: Optional[Callable[[str], object]] = None,
    ):
        self.handler = handler
        self.first_loop = True
        self.readers: list[str] = []
        self.current: dict[str, ReaderState] = {}
        self.rescan_needed = False
        self.reset(readers)

    def reset(self, readers: Iterable[str]) -> None:
        """Start following ``readers``, all in the unaware state."""
        self.readers = list(readers)
        self.current = {name: ReaderState.UNAWARE for name in self.readers}
        self.rescan_needed = False

    def _fire(self, event: str) -> None:
        if self.handler is None:
            log.debug("event %s", event)
            return
        try:
            self.handler(event)
        except LookupError as exc:
            log.debug("%s", exc)

    def _as_mapping(self, states: StateInput) -> dict[str, ReaderState]:
        if isinstance(states, Mapping):
            unknown = set(states) - set(self.readers)
            if unknown:
                raise ValueError(f"unknown reader(s): {', '.join(sorted(unknown))}")
            return {name: ReaderState(states.get(name, 0)) for name in self.readers}
        values = list(states)
        if len(values) != len(self.readers):
            raise ValueError(
                f"expected {len(self.readers)} reader states, got {len(values)}"
            )
        return {name: ReaderState(value) for name, value in zip(self.readers, values)}

    def update(self, states: StateInput) -> list[tuple[str, str]]:
        """Process one round of reported event states.

        Returns the ``(reader, event)`` pairs that were fired.
        """
        reported = self._as_mapping(states)
        fired: list[tuple[str, str]] = []
        for name in self.readers:
            new_state = reported[name]
            if not new_state & ReaderState.CHANGED:
                continue
            self.current[name] = new_state
            if self.first_loop:
                continue
            log.debug("Reader %s: card state 0x%08x", name, int(new_state))
            if new_state & ReaderState.UNKNOWN:
                log.debug("Reader unknown")
                self.rescan_needed = True
                return fired
            if new_state & ReaderState.EMPTY:
                log.debug("Card removed")
                fired.append((name, "card_remove"))
                self._fire("card_remove")
            if new_state & ReaderState.PRESENT:
                log.debug("Card inserted")
                fired.append((name, "card_insert"))
                self._fire("card_insert")
        self.first_loop = False
        return fired