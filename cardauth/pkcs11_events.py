"""Card insertion and removal events by polling a PKCS#11 token list."""

from __future__ import annotations

import enum
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .config import Block, Config
from .events import execute_event
from .parser import ConfigParseError, parse_file

__all__ = ["CardState", "Pkcs11EventSettings", "load_settings", "PollingMonitor"]

log = logging.getLogger(__name__)

DEF_POLLING = 1
DEF_EXPIRE = 0
DEF_PKCS11_MODULE = "/usr/lib/opensc-pkcs11.so"
DEF_CONFIG_FILE = "/etc/pam_pkcs11/pkcs11_eventmgr.conf"

USAGE = (
    "PKCS#11 Event Manager\n\n"
    "Usage pkcs11_eventmgr [[no]debug] [[no]daemon] [polling_time=<time>] "
    "[expire_time=<limit>] [config_file=<file>] [pkcs11_module=<module>]\n\n\n"
    f"Defaults: debug=0 daemon=0 polltime={DEF_POLLING} (ms) expiretime=0 (none) "
    f"config_file={DEF_CONFIG_FILE} pkcs11_module={DEF_PKCS11_MODULE}"
)

_INT_ARG = re.compile(r"\s*([+-]?\d+)")


class CardState(enum.IntEnum):
    """Result of probing the token list."""

    ERROR = -1
    NOT_PRESENT = 0
    PRESENT = 1


@dataclass
class Pkcs11EventSettings:
    """Options of the PKCS#11 event manager."""

    polling_time: int = DEF_POLLING
    expire_time: int = DEF_EXPIRE
    daemonize: bool = False
    debug: bool = False
    config_file: str = DEF_CONFIG_FILE
    pkcs11_module: Optional[str] = None
    config: Optional[Config] = None
    root: Optional[Block] = None


def _int_option(arg: str, prefix: str, current: int) -> int:
    if not arg.startswith(prefix):
        return current
    match = _INT_ARG.match(arg, len(prefix))
    return int(match.group(1)) if match else current


def load_settings(argv=None) -> Pkcs11EventSettings:
    """Read the configuration file, then let command-line options override it.

    ``argv`` holds the options without the program name.  Raises
    :class:`ConfigParseError` when the file cannot be used and
    :class:`ValueError` on an unknown option.
    """
    args = list(argv or [])
    settings = Pkcs11EventSettings()
    if "debug" in args:
        settings.debug = True
    for arg in args:
        if "config_file=" in arg:
            settings.config_file = arg.split("=", 1)[1]
            break

    config = Config(settings.config_file)
    parse_file(config)
    root = config.find_block("pkcs11_eventmgr")
    if root is None:
        raise ConfigParseError(
            f"pkcs11_eventmgr block not found in config: '{settings.config_file}'"
        )
    settings.config = config
    settings.root = root
    settings.debug = root.get_bool("debug", settings.debug)
    settings.daemonize = root.get_bool("daemon", settings.daemonize)
    settings.polling_time = root.get_int("polling_time", settings.polling_time)
    settings.expire_time = root.get_int("expire_time", settings.expire_time)
    settings.pkcs11_module = root.get_str("pkcs11_module", settings.pkcs11_module)

    for arg in args:
        if arg == "daemon":
            settings.daemonize = True
        elif arg == "nodaemon":
            settings.daemonize = False
        elif "polling_time=" in arg:
            settings.polling_time = _int_option(arg, "polling_time=", settings.polling_time)
        elif "expire_time=" in arg:
            settings.expire_time = _int_option(arg, "expire_time=", settings.expire_time)
        elif "pkcs11_module=" in arg:
            settings.pkcs11_module = arg.split("=", 1)[1]
        elif "debug" in arg or "config_file=" in arg:
            continue
        else:
            raise ValueError(f"unknown option {arg}\n{USAGE}")

    if settings.debug:
        logging.getLogger("cardauth").setLevel(logging.DEBUG)
    return settings


class PollingMonitor:
    """Turn successive card states into ``card_insert``, ``card_remove``
    and ``expire_time`` events.

    ``handler`` is called with each event name.  ``reinitialize`` is called
    after a removal and after a probe error, to restart the token library.
    """

    def __init__(
        self,
        polling_time: int = DEF_POLLING,
        expire_time: int = DEF_EXPIRE,
        handler: Optional[Callable[[str], object]] = None,
        reinitialize: Optional[Callable[[], object]] = None,
    ):
        self.polling_time = polling_time
        self.expire_time = expire_time
        self.handler = handler
        self.reinitialize = reinitialize
        self.old_state = CardState.NOT_PRESENT
        self.expire_count = 0
        self._changes = 0

    def _fire(self, event: str) -> None:
        if self.handler is None:
            log.debug("event %s", event)
            return
        try:
            self.handler(event)
        except LookupError as exc:
            log.debug("%s", exc)

    def _restart(self) -> None:
        if self.reinitialize is not None:
            self.reinitialize()

    def step(self, state: CardState) -> list[str]:
        """Process one probe result and return the events it fired."""
        state = CardState(state)
        if state is CardState.ERROR:
            raise ValueError("an error state cannot be processed as an event")
        fired: list[str] = []
        if state == self.old_state:
            if self.expire_time == 0 or state is CardState.PRESENT:
                return fired
            self.expire_count += self.polling_time
            if self.expire_count >= self.expire_time:
                log.debug("Timeout on Card Removed")
                fired.append("expire_time")
                self._fire("expire_time")
                self.expire_count = 0
            return fired

        self.old_state = state
        self.expire_count = 0
        first = self._changes == 0
        self._changes += 1
        if first:
            return fired
        if state is CardState.NOT_PRESENT:
            log.debug("Card removed")
            fired.append("card_remove")
            self._fire("card_remove")
            log.debug("Re-initialising pkcs #11 module...")
            self._restart()
        else:
            log.debug("Card inserted")
            fired.append("card_insert")
            self._fire("card_insert")
        return fired

    def run(
        self,
        probe: Callable[[], CardState],
        sleep: Callable[[float], object] = time.sleep,
    ) -> None:
        """Poll until ``probe`` reports an error, then restart the library and return."""
        while True:
            sleep(self.polling_time)
            state = CardState(probe())
            if state is CardState.ERROR:
                log.debug("Error trying to get a token")
                self._restart()
                return
            self.step(state)