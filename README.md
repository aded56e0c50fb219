# cardauth

Tools for smart card login setups: reading and writing block-structured
configuration files, turning card insertion and removal into configured
actions, and running a chain of certificate-to-user mappers.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Configuration files

The configuration format is made of named blocks, `key = value;` items
and `#` comments:

```
pam_pkcs11 {
    use_pkcs11_module = opensc;
    pkcs11_module opensc {
        module = /usr/lib/opensc-pkcs11.so;
    }
    use_mappers = digest, cn, null;
}
```

- `cardauth.config` holds the tree: `Config`, `Block`, `Item` and
  `ItemType`. Blocks are searched with `find_block`, `find_blocks` and
  `find_list`; values are read with `get_str`, `get_int` and `get_bool`
  (keys compare case-insensitively; `get_bool` is true for values
  starting with `T` or `Y`) and written with `put_str`, `put_int` and
  `put_bool`. Putting a value under an existing key appends to it.
  `join_list` joins a value list with a filler and gives `None` for an
  empty list.
- `cardauth.parser` reads text into a `Config` with `parse_string`, or
  the file named by `Config.filename` with `parse_file`. Structural
  mistakes raise `ConfigParseError` with a `Line N:` message; a file
  that cannot be opened raises it too. A missing `;` or closing quote
  is only recorded as a warning on the returned `Parser`.
- `cardauth.writer` turns a `Config` back into text with `render`, or
  writes it to disk with `write_config`. Values are quoted only when they
  hold characters other than ASCII letters, digits, `!`, `.` and `/`.
- `cardauth.entries` maps declarative `Entry` tables onto blocks with
  `parse_entries` and `write_entries`; a missing mandatory entry or a
  failed decode raises `EntryError`.

## The `pkcs11-setup` command

`pkcs11-setup` reads and changes the smart card configuration in
`/etc/pam_pkcs11/pam_pkcs11.conf` and
`/etc/pam_pkcs11/pkcs11_eventmgr.conf`:

```
pkcs11-setup list_modules
pkcs11-setup use_module
pkcs11-setup use_module=opensc
pkcs11-setup ins_action
pkcs11-setup ins_action=/usr/bin/unlock-screen,/usr/bin/notify
pkcs11-setup rm_action=/usr/bin/lock-screen
```

- `list_modules` prints the configured `pkcs11_module` names whose
  library file exists.
- `use_module` alone prints the default module; `use_module=<name>`
  makes it the default and sets the event manager's `pkcs11_module` to
  that module's library.
- `ins_action` / `rm_action` alone print the commands of the
  `card_insert` / `card_remove` event; with `=<cmd,cmd,...>` they
  replace them.

Adding `debug` to the arguments turns on debug logging. The same
operations are available from Python as `list_modules`,
`default_module`, `set_default_module`, `event_actions` and
`set_event_actions` in `cardauth.setup_tool`, each taking the file
paths as optional arguments.

## Card events

Event blocks describe what to run:

```
event card_insert {
    on_error = ignore;
    action = "/usr/bin/unlock-screen";
}
```

`cardauth.events.execute_event` runs the actions of a named event in
order, through `/bin/sh -c` by default, and returns the
`(command, status)` pairs it ran. `on_error` (`OnError`) decides what a
failing command does: `ignore` carries on, `return` stops the event,
and `quit` raises `QuitRequested`. An unknown event raises
`LookupError`. The module also offers `daemonize` and pidfile helpers
(`create_pidfile`, `read_pidfile`, `remove_pidfile`).

- `cardauth.pkcs11_events`: `load_settings` reads the `pkcs11_eventmgr`
  block and command-line style overrides into `Pkcs11EventSettings`,
  and `PollingMonitor` turns successive `CardState` readings into
  `card_insert`, `card_remove` and `expire_time` events; `run` polls a
  probe function you supply.
- `cardauth.card_events`: `load_settings` builds `CardEventSettings`
  from the `card_eventmgr` block, and `ReaderTracker` turns reported
  reader states (`ReaderState`) into card events.

## Mapper chains

`cardauth.mapper_mgr.MapperChain` loads the mappers listed in
`use_mappers` inside the `pam_pkcs11` block, taking their initialisers
from the `static_mappers` and `external_mappers` mappings given to it.
`find_user` asks each mapper in turn for a login name for a
certificate, `match_user` checks whether any mapper accepts a given
login, and `inspect` prints the data each mapper extracts from a
certificate. `unload` releases every mapper.

## What this package does not do

- It does not talk to smart cards, PKCS#11 libraries or PC/SC readers:
  the event classes work on card and reader states that the caller
  supplies, and there is no event manager command that watches
  hardware.
- It ships no mappers of its own and does not read or verify
  certificates; mapper functions are supplied by the caller.
- It is not a PAM module and performs no login.