import pytest

from cardauth.events import execute_event
from cardauth.parser import ConfigParseError
from cardauth.pkcs11_events import (
    DEF_CONFIG_FILE,
    CardState,
    PollingMonitor,
    Pkcs11EventSettings,
    load_settings,
)

CONF = """pkcs11_eventmgr {
    debug = false;
    daemon = true;
    polling_time = 2;
    expire_time = 10;
    pkcs11_module = /usr/lib/opensc-pkcs11.so;
    event card_insert {
        on_error = ignore;
        action = "echo in";
    }
    event card_remove {
        action = "echo out";
    }
}
"""


@pytest.fixture
def conf_path(tmp_path):
    path = tmp_path / "pkcs11_eventmgr.conf"
    path.write_text(CONF)
    return str(path)


def test_defaults():
    settings = Pkcs11EventSettings()
    assert settings.polling_time == 1
    assert settings.expire_time == 0
    assert settings.config_file == DEF_CONFIG_FILE


def test_card_state_values():
    assert CardState(1) is CardState.PRESENT
    assert CardState(-1) is CardState.ERROR


def test_load_settings_from_file(conf_path):
    settings = load_settings([f"config_file={conf_path}"])
    assert settings.config_file == conf_path
    assert settings.daemonize is True
    assert settings.polling_time == 2
    assert settings.expire_time == 10
    assert settings.pkcs11_module == "/usr/lib/opensc-pkcs11.so"
    assert settings.root.find_blocks("event", "card_insert")


def test_command_line_overrides(conf_path):
    settings = load_settings(
        [f"config_file={conf_path}", "nodaemon", "polling_time=5", "pkcs11_module=/opt/p11.so"]
    )
    assert settings.daemonize is False
    assert settings.polling_time == 5
    assert settings.pkcs11_module == "/opt/p11.so"


def test_unknown_option(conf_path):
    with pytest.raises(ValueError):
        load_settings([f"config_file={conf_path}", "frobnicate"])


def test_missing_block(tmp_path):
    path = tmp_path / "other.conf"
    path.write_text("card_eventmgr { debug = true; }\n")
    with pytest.raises(ConfigParseError):
        load_settings([f"config_file={path}"])


def test_missing_file(tmp_path):
    with pytest.raises(ConfigParseError):
        load_settings([f"config_file={tmp_path / 'absent.conf'}"])


def test_first_change_is_skipped():
    events = []
    restarts = []
    monitor = PollingMonitor(1, 0, events.append, lambda: restarts.append(1))
    assert monitor.step(CardState.PRESENT) == []
    assert monitor.step(CardState.NOT_PRESENT) == ["card_remove"]
    assert monitor.step(CardState.PRESENT) == ["card_insert"]
    assert events == ["card_remove", "card_insert"]
    assert len(restarts) == 1


def test_unchanged_state_fires_nothing_without_expiry():
    events = []
    monitor = PollingMonitor(1, 0, events.append)
    for _ in range(5):
        monitor.step(CardState.NOT_PRESENT)
    assert events == []


def test_expire_time_event():
    events = []
    monitor = PollingMonitor(1, 2, events.append)
    assert monitor.step(CardState.NOT_PRESENT) == []
    assert monitor.step(CardState.NOT_PRESENT) == ["expire_time"]
    assert monitor.expire_count == 0
    monitor.step(CardState.NOT_PRESENT)
    monitor.step(CardState.NOT_PRESENT)
    assert events == ["expire_time", "expire_time"]


def test_step_rejects_error():
    with pytest.raises(ValueError):
        PollingMonitor().step(CardState.ERROR)


def test_run_stops_on_error():
    states = iter([CardState.PRESENT, CardState.NOT_PRESENT, CardState.ERROR])
    sleeps = []
    events = []
    restarts = []
    monitor = PollingMonitor(3, 0, events.append, lambda: restarts.append(1))
    monitor.run(lambda: next(states), sleeps.append)
    assert sleeps == [3, 3, 3]
    assert events == ["card_remove"]
    assert len(restarts) == 2


def test_monitor_runs_configured_actions(conf_path):
    settings = load_settings([f"config_file={conf_path}"])
    commands = []

    def runner(command):
        commands.append(command)
        return 0

    monitor = PollingMonitor(
        settings.polling_time,
        settings.expire_time,
        lambda event: execute_event(settings.root, event, runner),
    )
    assert monitor.step(CardState.PRESENT) == []
    assert monitor.step(CardState.NOT_PRESENT) == ["card_remove"]
    assert monitor.step(CardState.PRESENT) == ["card_insert"]
    assert commands == ["echo out", "echo in"]


def test_missing_event_block_is_tolerated(conf_path):
    settings = load_settings([f"config_file={conf_path}"])
    commands = []
    monitor = PollingMonitor(
        1, 1, lambda event: execute_event(settings.root, event, commands.append)
    )
    assert monitor.step(CardState.NOT_PRESENT) == ["expire_time"]
    assert commands == []