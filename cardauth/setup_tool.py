"""Inspect and change the smart-card module and event actions in the config files."""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional, Union

from .config import Block, Config, ItemType, join_list
from .parser import ConfigParseError, parse_file
from .writer import write_config

__all__ = [
    "replace_str",
    "replace_str_list",
    "list_modules",
    "default_module",
    "set_default_module",
    "event_actions",
    "set_event_actions",
    "parse_params",
    "main",
]

log = logging.getLogger(__name__)

CONFDIR = "/etc/pam_pkcs11"
PAM_PKCS11_CONF = CONFDIR + "/pam_pkcs11.conf"
EVENTMGR_CONF = CONFDIR + "/pkcs11_eventmgr.conf"

PARAM_NAMES = ("ins_action", "rm_action", "use_module", "list_modules")
_VALUED = frozenset({"ins_action", "rm_action", "use_module"})

USAGE = (
    "usage: pkcs11_setup [list_modules] [use_module[=<module_name>]]\n"
    "                    [ins_action[=<executable,executable,...>]]\n"
    "                    [rm_action[=<executable,executable,...>]]"
)

_LIB_DIRS = ("/lib", "/usr/lib", "/lib64", "/usr/lib64", "/usr/local/lib")
_FAILURES = (ConfigParseError, LookupError, OSError)


def replace_str(block: Block, option: str, value: str) -> str:
    """Set ``option`` to the single value ``value``, dropping old values."""
    item = block.add_item(ItemType.VALUE, option, [value])
    item.value = [value]
    return value


def replace_str_list(block: Block, option: str, value: str) -> list[str]:
    """Set ``option`` to the comma-separated values in ``value``."""
    values = value.split(",")
    item = block.add_item(ItemType.VALUE, option, values)
    item.value = list(values)
    return item.value


def _load(path: str) -> Config:
    config = Config(path)
    parse_file(config)
    return config


def _require_block(config: Config, name: str) -> Block:
    block = config.find_block(name)
    if block is None:
        raise LookupError(f"{name} block not found in {config.filename}")
    return block


def _event_block(config: Config, event: str) -> Block:
    manager = _require_block(config, "pkcs11_eventmgr")
    blocks = manager.find_blocks("event", event)
    if not blocks:
        raise LookupError(f"event {event} not found in {config.filename}")
    return blocks[0]


def _module_installed(path: str) -> bool:
    if "/" in path or os.sep in path:
        return os.path.isfile(path)
    dirs = [d for d in os.environ.get("LD_LIBRARY_PATH", "").split(os.pathsep) if d]
    dirs.extend(_LIB_DIRS)
    return any(os.path.isfile(os.path.join(d, path)) for d in dirs)


def list_modules(pam_conf: Optional[str] = None) -> list[str]:
    """Names of configured PKCS#11 modules whose library is installed."""
    config = _load(pam_conf or PAM_PKCS11_CONF)
    pam = _require_block(config, "pam_pkcs11")
    names = []
    for block in pam.find_blocks("pkcs11_module"):
        path = block.get_str("module", None)
        if not path:
            continue
        if _module_installed(path) and block.name:
            names.append(block.first_name)
    return names


def default_module(pam_conf: Optional[str] = None) -> str:
    """The module named by ``use_pkcs11_module``, or an empty string."""
    config = _load(pam_conf or PAM_PKCS11_CONF)
    return _require_block(config, "pam_pkcs11").get_str("use_pkcs11_module", "")


def set_default_module(
    module: str, pam_conf: Optional[str] = None, eventmgr_conf: Optional[str] = None
) -> str:
    """Make ``module`` the default in both files; return its library path."""
    config = _load(pam_conf or PAM_PKCS11_CONF)
    pam = _require_block(config, "pam_pkcs11")
    replace_str(pam, "use_pkcs11_module", module)
    blocks = pam.find_blocks("pkcs11_module", module)
    if not blocks:
        raise LookupError(f"pkcs11_module {module} not found in {config.filename}")
    library = blocks[0].get_str("module", None)
    if not library:
        raise LookupError(f"pkcs11_module {module} has no module path")
    write_config(config)

    events = _load(eventmgr_conf or EVENTMGR_CONF)
    manager = _require_block(events, "pkcs11_eventmgr")
    replace_str(manager, "pkcs11_module", library)
    write_config(events)
    return library


def event_actions(event: str, eventmgr_conf: Optional[str] = None) -> list[str]:
    """The action commands of the event block named ``event``."""
    config = _load(eventmgr_conf or EVENTMGR_CONF)
    return list(_event_block(config, event).find_list("action") or [])


def set_event_actions(event: str, actions: str, eventmgr_conf: Optional[str] = None) -> list[str]:
    """Replace the actions of ``event`` with the comma-separated ``actions``."""
    config = _load(eventmgr_conf or EVENTMGR_CONF)
    values = replace_str_list(_event_block(config, event), "action", actions)
    write_config(config)
    return values


def parse_params(argv) -> dict[str, Union[str, bool]]:
    """Map given parameter names to their value, or True when given bare."""
    params: dict[str, Union[str, bool]] = {}
    for arg in argv:
        for name in PARAM_NAMES:
            if name in _VALUED and arg.startswith(name + "="):
                params[name] = arg[len(name) + 1:]
            elif arg == name:
                params[name] = True
    return params


def _code(exc: BaseException) -> int:
    if isinstance(exc, OSError) and not isinstance(exc, ConfigParseError) and exc.errno:
        return exc.errno
    return 1


def main(argv=None) -> int:
    """Command entry point; returns the process exit status."""
    args = list(sys.argv[1:] if argv is None else argv)
    if "debug" in args:
        logging.basicConfig(level=logging.DEBUG)

    params = parse_params(args)
    if not params:
        log.debug("No correct parameter specified")
        print(USAGE)

    if "list_modules" in params:
        log.debug("List modules:")
        try:
            for name in list_modules():
                print(name)
        except _FAILURES as exc:
            log.error("List modules failed: %s", exc)
            return 1
        return 0

    use = params.get("use_module")
    if use is True:
        try:
            print(default_module())
        except _FAILURES as exc:
            code = _code(exc)
            log.error("Print default module failed with: %d", code)
            return code
        return 0
    if use is not None:
        try:
            set_default_module(use)
        except _FAILURES as exc:
            code = _code(exc)
            log.error("Set default module failed with: %d", code)
            return code

    for param, event in (("ins_action", "card_insert"), ("rm_action", "card_remove")):
        value = params.get(param)
        if value is True:
            try:
                text = join_list(event_actions(event), "\n")
            except _FAILURES as exc:
                code = _code(exc)
                log.error("Print %s action failed with: %d", event, code)
                return code
            if text is not None:
                print(text)
            return 0
        if value is not None:
            try:
                set_event_actions(event, value)
            except _FAILURES as exc:
                code = _code(exc)
                log.error("Set %s action failed with: %d", event, code)
                return code

    log.debug("Process completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())