"""Shared helpers of the card event managers.

Running the configured actions of an event, putting the process into the
background and handling the pid file.
"""

from __future__ import annotations

import enum
import logging
import os
import re
import subprocess
from typing import Callable, Optional

from .config import Block

__all__ = [
    "OnError",
    "QuitRequested",
    "run_command",
    "execute_event",
    "daemonize",
    "read_pidfile",
    "create_pidfile",
    "remove_pidfile",
]

log = logging.getLogger(__name__)

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class OnError(enum.Enum):
    """What to do when one of an event's actions fails."""

    IGNORE = "ignore"
    RETURN = "return"
    QUIT = "quit"


class QuitRequested(Exception):
    """A failing action asked the event manager to shut down."""

    def __init__(self, command: str, status: int):
        super().__init__(f"action '{command}' failed with status {status}")
        self.command = command
        self.status = status


def run_command(command: Optional[str]) -> int:
    """Run ``command`` through ``/bin/sh -c`` and return its exit status."""
    if command is None:
        return 1
    try:
        return subprocess.run(["/bin/sh", "-c", command], check=False).returncode
    except OSError as exc:
        log.debug("cannot start shell for '%s': %s", command, exc)
        return -1


def execute_event(
    root: Block,
    action: str,
    runner: Callable[[str], int] = run_command,
) -> list[tuple[str, int]]:
    """Run the actions of the ``event`` block named ``action``.

    Returns the ``(command, status)`` pairs of the commands that were run.
    Raises :class:`LookupError` when there is no such event and
    :class:`QuitRequested` when an action fails and ``on_error`` is ``quit``.
    """
    blocks = root.find_blocks("event", action)
    if not blocks:
        raise LookupError(f"Event item not found: '{action}'")
    event = blocks[0]
    on_error_text = event.get_str("on_error", "ignore")
    try:
        on_error = OnError(on_error_text)
    except ValueError:
        log.debug("Invalid onerror value: '%s'. Assumed 'ignore'", on_error_text)
        on_error = OnError.IGNORE

    actions = event.find_list("action")
    if not actions:
        log.debug("No action list for event '%s'", action)
        return []
    log.debug("Onerror is set to: '%s'", on_error_text)

    results: list[tuple[str, int]] = []
    for command in actions:
        log.debug("Executing action: '%s'", command)
        status = runner(command)
        log.debug("Action '%s' returns %d", command, status)
        results.append((command, status))
        if not status:
            continue
        if on_error is OnError.RETURN:
            break
        if on_error is OnError.QUIT:
            raise QuitRequested(command, status)
    return results


def daemonize(nochdir: bool = False, noclose: bool = False) -> None:
    """Detach from the terminal: fork, start a new session, drop std streams."""
    if os.fork():
        os._exit(0)
    os.setsid()
    if not nochdir:
        os.chdir("/")
    if noclose:
        return
    try:
        fd = os.open(os.devnull, os.O_RDWR)
    except OSError:
        return
    for target in (0, 1, 2):
        os.dup2(fd, target)
    if fd > 2:
        os.close(fd)


def read_pidfile(filename: str) -> int:
    """Return the pid stored in ``filename``, or 0 when there is none."""
    try:
        with open(filename, encoding="ascii", errors="replace") as handle:
            text = handle.read()
    except OSError as exc:
        log.debug("Can't read pidfile %s: %s", filename, exc.strerror or exc)
        return 0
    match = _LEADING_INT.match(text)
    if not match:
        log.debug("Can't parse pidfile %s", filename)
        return 0
    return int(match.group(1))


def create_pidfile(filename: str) -> int:
    """Create ``filename`` holding the current pid; fail if it already exists."""
    pid = os.getpid()
    fd = os.open(filename, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
    with os.fdopen(fd, "w", encoding="ascii") as handle:
        handle.write(f"{pid}\n")
    return pid


def remove_pidfile(filename: str) -> None:
    """Remove ``filename``; a failure is only logged."""
    try:
        os.unlink(filename)
    except OSError as exc:
        log.debug("Can't unlink pidfile %s: %s", filename, exc.strerror or exc)