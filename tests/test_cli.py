"""
Tests for the command line interface.
"""

import json
import pytest
from epascript.__main__ import main, parse_assignment
from epascript.config import EPASCRIPT_CONFIG


SCRIPT = (
    "BEGIN_GUI_DESCR\n"
    "USER_INPUT_PARAM DOUBLE LENGTH 100\n"
    "IF LENGTH > 50\n"
    '  SUB_PICTURE "long.gif" 0 0\n'
    "ELSE\n"
    '  SUB_PICTURE "short.gif" 0 0\n'
    "END_IF\n"
    "END_GUI_DESCR\n"
)

TABLE_SCRIPT = (
    "BEGIN_TAB_DESCR\n"
    "BEGIN_TABLE SIZES\n"
    "SEL_STRING LENGTH\n"
    "STRING DOUBLE\n"
    '"short" 10\n'
    '"long" 90\n'
    "END_TABLE\n"
    "END_TAB_DESCR\n"
)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    monkeypatch.delenv(EPASCRIPT_CONFIG, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))


@pytest.fixture
def script_file(tmp_path):
    def _write(text, name="script.epa"):
        path = tmp_path / name
        path.write_text(text)
        return str(path)
    return _write


class TestParseAssignment:
    """Test NAME=VALUE parsing."""

    def test_typed_values(self):
        assert parse_assignment("N=3") == ("N", 3)
        assert parse_assignment("X = 2.5") == ("X", 2.5)
        assert parse_assignment("FLAG=true") == ("FLAG", True)
        assert parse_assignment('NAME="M6"') == ("NAME", "M6")
        assert parse_assignment("NAME=M6") == ("NAME", "M6")

    def test_missing_equals(self):
        with pytest.raises(ValueError):
            parse_assignment("N")


class TestCheck:
    """Test the check command."""

    def test_valid_script(self, script_file, capsys):
        assert main(["check", script_file(SCRIPT)]) == 0
        out = capsys.readouterr().out
        assert "OK: script.epa - 1 section(s), 2 command(s)" in out

    def test_parse_error(self, script_file, capsys):
        path = script_file("BEGIN_ASM_DESCR\nDECLARE_VARIABLE WIDGET X\nEND_ASM_DESCR\n")
        assert main(["check", path]) == 1
        assert "E105" in capsys.readouterr().out

    def test_lexer_error(self, script_file, capsys):
        assert main(["check", script_file('X = "abc\n')]) == 1
        assert "E002" in capsys.readouterr().out

    def test_json(self, script_file, capsys):
        path = script_file("BEGIN_ASM_DESCR\nDECLARE_VARIABLE WIDGET X\nEND_ASM_DESCR\n")
        assert main(["check", path, "--json"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert report["error_count"] == 1
        assert [d["code"] for d in report["diagnostics"]] == ["E105"]

    def test_missing_file(self, tmp_path, capsys):
        assert main(["check", str(tmp_path / "nope.epa")]) == 1
        assert "File not found" in capsys.readouterr().err


class TestInspect:
    """Test the tokens and ast commands."""

    def test_tokens(self, script_file, capsys):
        assert main(["tokens", script_file("DECLARE_VARIABLE INTEGER X 1\n")]) == 0
        out = capsys.readouterr().out
        assert "KEYWORD('DECLARE_VARIABLE')" in out
        assert "EOF" in out

    def test_ast(self, script_file, capsys):
        assert main(["ast", script_file(SCRIPT)]) == 0
        out = capsys.readouterr().out
        assert "UserInputParam" in out
        assert "IfCommand" in out


class TestRun:
    """Test headless runs."""

    def test_run_with_input(self, script_file, capsys):
        assert main(["run", script_file(SCRIPT), "--set", "LENGTH=20"]) == 0
        out = capsys.readouterr().out
        assert "LENGTH = 20.0" in out
        assert "SUB_PICTURE short.gif at (0, 0)" in out
        assert ": else" in out
        assert "may_proceed: True" in out

    def test_run_json(self, script_file, capsys):
        assert main(["run", script_file(SCRIPT), "--json"]) == 0
        state = json.loads(capsys.readouterr().out)
        assert state["variables"]["LENGTH"] == 100.0
        assert state["sub_pictures"] == [["long.gif", 0, 0]]
        assert state["may_proceed"] is True

    def test_run_table_row(self, script_file, capsys):
        assert main(["run", script_file(TABLE_SCRIPT), "--row", "SIZES=1", "--json"]) == 0
        state = json.loads(capsys.readouterr().out)
        assert state["variables"]["SIZES"] == {"SEL_STRING": "long", "LENGTH": 90}

    def test_run_reports_errors(self, script_file, capsys):
        assert main(["run", script_file(SCRIPT), "--set", "NOPE=1"]) == 1
        assert "E202" in capsys.readouterr().err

    def test_bad_assignment(self, script_file, capsys):
        assert main(["run", script_file(SCRIPT), "--set", "LENGTH"]) == 1
        assert "expected name=value" in capsys.readouterr().err

    def test_config_and_log_level(self, script_file, tmp_path, capsys):
        config = tmp_path / "config.yaml"
        config.write_text("trig_in_degrees: false\n")
        path = script_file("DECLARE_VARIABLE DOUBLE X sin(PI / 2)\n")
        assert main(["--config", str(config), "--log-level", "error", "run", path, "--json"]) == 0
        state = json.loads(capsys.readouterr().out)
        assert state["variables"]["X"] == pytest.approx(1.0)
