"""Tests for the output formatting system.

Covers:
- OutputFormat resolution (auto -> rich/plain based on TTY)
- NO_COLOR / TERM=dumb color disabling
- stdout vs stderr discipline
- Quiet and verbose modes
- JSON and plain rendering of verification results
- print_table in JSON and plain modes
- Secret masking
- Global instance management
"""

from __future__ import annotations

import json

import pytest

from agegate import output as output_module
from agegate.output import (
    OutputFormat,
    OutputManager,
    _should_disable_color,
    get_output,
    mask_secret,
    reset_output,
    set_output,
)


# ------------------------------------------------------------------ #
# Fixtures
# ------------------------------------------------------------------ #


@pytest.fixture()
def non_tty(monkeypatch):
    """Patch stdout.isatty() to return False."""
    monkeypatch.setattr("agegate.output._is_tty", lambda: False)


@pytest.fixture()
def tty(monkeypatch):
    """Patch stdout.isatty() to return True."""
    monkeypatch.setattr("agegate.output._is_tty", lambda: True)


# ------------------------------------------------------------------ #
# OutputFormat resolution
# ------------------------------------------------------------------ #


class TestOutputFormatResolution:
    def test_auto_resolves_to_plain_when_not_tty(self, non_tty):
        assert OutputManager(format=OutputFormat.AUTO).format == OutputFormat.PLAIN

    def test_auto_resolves_to_rich_when_tty(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        assert OutputManager(format=OutputFormat.AUTO).format == OutputFormat.RICH

    def test_no_color_flag_forces_plain(self, tty, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.delenv("TERM", raising=False)
        mgr = OutputManager(format=OutputFormat.AUTO, no_color=True)
        assert mgr.format == OutputFormat.PLAIN

    def test_explicit_json_stays_json(self, tty):
        assert OutputManager(format=OutputFormat.JSON).format == OutputFormat.JSON


class TestColorDisabling:
    def test_no_color_env_any_value(self, monkeypatch):
        monkeypatch.setenv("NO_COLOR", "")
        assert _should_disable_color() is True

    def test_term_dumb(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "dumb")
        assert _should_disable_color() is True

    def test_normal_term_keeps_color(self, monkeypatch):
        monkeypatch.delenv("NO_COLOR", raising=False)
        monkeypatch.setenv("TERM", "xterm-256color")
        assert _should_disable_color() is False


# ------------------------------------------------------------------ #
# stdout vs stderr discipline
# ------------------------------------------------------------------ #


class TestStdoutStderrDiscipline:
    def test_print_data_goes_to_stdout(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_data("hello world")
        captured = capfd.readouterr()
        assert "hello world" in captured.out
        assert captured.err == ""

    @pytest.mark.parametrize("method", ["info", "success", "warning", "error", "suggest"])
    def test_diagnostics_go_to_stderr(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        getattr(mgr, method)("diagnostic text")
        captured = capfd.readouterr()
        assert captured.out == ""
        assert "diagnostic text" in captured.err

    def test_no_diagnostics_leak_into_json(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True, verbose=True)
        mgr.info("Opening browser")
        mgr.debug("POST /oauth/token")
        mgr.format_response({"verified": True})
        mgr.success("done")
        captured = capfd.readouterr()
        assert json.loads(captured.out) == {"verified": True}
        assert "Opening browser" in captured.err
        assert "POST /oauth/token" in captured.err


class TestQuietMode:
    @pytest.mark.parametrize("method", ["info", "success", "suggest"])
    def test_quiet_suppresses(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        getattr(mgr, method)("should not appear")
        assert capfd.readouterr().err == ""

    @pytest.mark.parametrize("method", ["warning", "error"])
    def test_quiet_keeps_problems(self, capfd, non_tty, method):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        getattr(mgr, method)("important")
        assert "important" in capfd.readouterr().err

    def test_quiet_keeps_results(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True, quiet=True)
        mgr.format_response({"verified": False})
        assert "verified\tFalse" in capfd.readouterr().out


class TestVerboseMode:
    def test_debug_hidden_by_default(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).debug("hidden")
        assert capfd.readouterr().err == ""

    def test_debug_shown_with_prefix(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True).debug("trace")
        assert "[debug] trace" in capfd.readouterr().err


# ------------------------------------------------------------------ #
# Result rendering
# ------------------------------------------------------------------ #


class TestPlainFormat:
    def test_nested_dict_flattened(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.format_response(
            {"verified": True, "ageFlags": {"is16Plus": True, "is18Plus": False}}
        )
        lines = capfd.readouterr().out.strip().split("\n")
        assert lines == [
            "verified\tTrue",
            "ageFlags.is16Plus\tTrue",
            "ageFlags.is18Plus\tFalse",
        ]

    def test_list(self, capfd, non_tty):
        OutputManager(format=OutputFormat.PLAIN, no_color=True).format_response(["a", "b"])
        assert capfd.readouterr().out == "a\nb\n"


class TestPrintTable:
    def test_json_records(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON, no_color=True)
        mgr.print_table(["Key", "Value"], [["client_id", "demo"], ["timeout", "300"]])
        assert json.loads(capfd.readouterr().out) == [
            {"Key": "client_id", "Value": "demo"},
            {"Key": "timeout", "Value": "300"},
        ]

    def test_plain_tab_separated(self, capfd, non_tty):
        mgr = OutputManager(format=OutputFormat.PLAIN, no_color=True)
        mgr.print_table(["Key", "Value"], [["client_id", "demo"]])
        assert capfd.readouterr().out == "Key\tValue\nclient_id\tdemo\n"


# ------------------------------------------------------------------ #
# Helpers and global instance
# ------------------------------------------------------------------ #


class TestMaskSecret:
    def test_long_value(self):
        assert mask_secret("abcdefghijklmnop") == "abcdefgh..."

    def test_short_value(self):
        assert mask_secret("abc") == "***"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value):
        assert mask_secret(value) == "<none>"


class TestGlobalOutput:
    def test_default_is_quiet(self):
        reset_output()
        assert get_output().is_quiet

    def test_set_and_reset(self, non_tty):
        mgr = OutputManager(format=OutputFormat.JSON)
        set_output(mgr)
        assert get_output() is mgr
        reset_output()
        assert get_output() is not mgr

    def test_module_helpers_delegate(self, capfd, non_tty):
        set_output(OutputManager(format=OutputFormat.PLAIN, no_color=True, verbose=True))
        output_module.info("via helper")
        output_module.debug("debug via helper")
        err = capfd.readouterr().err
        assert "via helper" in err
        assert "[debug] debug via helper" in err
