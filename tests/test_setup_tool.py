import pytest

from cardauth import setup_tool
from cardauth.config import Block, Config
from cardauth.parser import ConfigParseError, parse_file
from cardauth.setup_tool import (
    default_module,
    event_actions,
    list_modules,
    main,
    parse_params,
    replace_str,
    replace_str_list,
    set_default_module,
    set_event_actions,
)

PAM_TEXT = """# main configuration
pam_pkcs11 {
  use_pkcs11_module = opensc;
  pkcs11_module opensc {
    module = "LIBPATH";
  }
  pkcs11_module missing {
    module = /nonexistent/lib.so;
  }
}
"""

EVENT_TEXT = """pkcs11_eventmgr {
  pkcs11_module = /usr/lib/old.so;
  event card_insert {
    on_error = ignore;
    action = "a", "b";
  }
  event card_remove {
    action = "c";
  }
}
"""


@pytest.fixture
def confs(tmp_path):
    lib = tmp_path / "opensc-pkcs11.so"
    lib.write_bytes(b"")
    pam = tmp_path / "pam_pkcs11.conf"
    pam.write_text(PAM_TEXT.replace("LIBPATH", str(lib)))
    events = tmp_path / "pkcs11_eventmgr.conf"
    events.write_text(EVENT_TEXT)
    return str(pam), str(events), str(lib)


@pytest.fixture
def patched(confs, monkeypatch):
    pam, events, _ = confs
    monkeypatch.setattr(setup_tool, "PAM_PKCS11_CONF", pam)
    monkeypatch.setattr(setup_tool, "EVENTMGR_CONF", events)
    return confs


def test_replace_str_drops_old_values():
    block = Block()
    block.put_str("opt", "old")
    block.put_str("opt", "older")
    assert replace_str(block, "opt", "new") == "new"
    assert block.find_list("opt") == ["new"]
    assert len(block.items) == 1


def test_replace_str_list_splits_on_commas():
    block = Block()
    block.put_str("action", "old")
    assert replace_str_list(block, "action", "a,b,") == ["a", "b", ""]
    assert block.find_list("action") == ["a", "b", ""]


def test_list_modules_only_installed(confs):
    pam, _, _ = confs
    assert list_modules(pam) == ["opensc"]


def test_default_module(confs):
    pam, _, _ = confs
    assert default_module(pam) == "opensc"


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigParseError):
        default_module(str(tmp_path / "nope.conf"))


def test_set_default_module_updates_both_files(confs):
    pam, events, _ = confs
    assert set_default_module("missing", pam, events) == "/nonexistent/lib.so"
    assert default_module(pam) == "missing"
    config = Config(events)
    parse_file(config)
    manager = config.find_block("pkcs11_eventmgr")
    assert manager.get_str("pkcs11_module") == "/nonexistent/lib.so"
    assert event_actions("card_insert", events) == ["a", "b"]


def test_set_unknown_module_leaves_files_alone(confs):
    pam, events, _ = confs
    with open(pam) as handle:
        before = handle.read()
    with pytest.raises(LookupError):
        set_default_module("nosuch", pam, events)
    with open(pam) as handle:
        assert handle.read() == before


def test_event_actions(confs):
    _, events, _ = confs
    assert event_actions("card_insert", events) == ["a", "b"]
    assert event_actions("card_remove", events) == ["c"]


def test_unknown_event_raises(confs):
    _, events, _ = confs
    with pytest.raises(LookupError):
        event_actions("expire_time", events)


def test_set_event_actions_round_trip(confs):
    _, events, _ = confs
    set_event_actions("card_remove", "x,y", events)
    assert event_actions("card_remove", events) == ["x", "y"]
    assert event_actions("card_insert", events) == ["a", "b"]


def test_parse_params():
    params = parse_params(["ins_action=foo", "use_module", "list_modules", "bogus"])
    assert params == {"ins_action": "foo", "use_module": True, "list_modules": True}


def test_parse_params_empty_value_and_later_wins():
    assert parse_params(["rm_action"]) == {"rm_action": True}
    assert parse_params(["rm_action", "rm_action="]) == {"rm_action": ""}
    assert parse_params(["list_modules=x"]) == {}


def test_main_prints_usage_without_params(capsys):
    assert main([]) == 0
    assert capsys.readouterr().out == setup_tool.USAGE + "\n"


def test_main_prints_default_module(patched, capsys):
    assert main(["use_module"]) == 0
    assert capsys.readouterr().out == "opensc\n"


def test_main_lists_modules(patched, capsys):
    assert main(["list_modules"]) == 0
    assert capsys.readouterr().out == "opensc\n"


def test_main_prints_insert_actions(patched, capsys):
    assert main(["ins_action"]) == 0
    assert capsys.readouterr().out == "a\nb\n"


def test_main_sets_remove_actions(patched):
    _, events, _ = patched
    assert main(["rm_action=x,y"]) == 0
    assert event_actions("card_remove", events) == ["x", "y"]


def test_main_fails_on_missing_config(tmp_path, monkeypatch):
    monkeypatch.setattr(setup_tool, "PAM_PKCS11_CONF", str(tmp_path / "absent.conf"))
    assert main(["use_module"]) == 1


def test_main_fails_on_unknown_module(patched):
    assert main(["use_module=nosuch"]) == 1