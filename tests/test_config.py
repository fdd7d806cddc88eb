"""
Tests for YAML settings loading.
"""

import logging
import pytest
from epascript import ScriptConfig, load_config, open_session
from epascript.config import EPASCRIPT_CONFIG


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep the user's own config file and environment out of the tests."""
    monkeypatch.delenv(EPASCRIPT_CONFIG, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("APPDATA", str(tmp_path / "appdata"))


class TestLoadConfig:
    """Test config file discovery and validation."""

    def test_defaults(self):
        config = load_config()
        assert config == ScriptConfig()
        assert config.max_errors == 20
        assert config.trig_in_degrees is True

    def test_explicit_path(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("max_errors: 5\nlog_level: info\ntable_height: 8\n")
        config = load_config(path)
        assert config.max_errors == 5
        assert config.log_level == "INFO"
        assert config.table_height == 8
        assert config.double_epsilon == 1e-9

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = tmp_path / "env.yaml"
        path.write_text("trig_in_degrees: false\ndouble_epsilon: 0.001\n")
        monkeypatch.setenv(EPASCRIPT_CONFIG, str(path))
        config = load_config()
        assert config.trig_in_degrees is False
        assert config.double_epsilon == 0.001

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == ScriptConfig()

    def test_unknown_key_warns(self, tmp_path, caplog):
        path = tmp_path / "config.yaml"
        path.write_text("max_errors: 3\ncolour: blue\n")
        with caplog.at_level(logging.WARNING, logger="epascript.config"):
            config = load_config(path)
        assert config.max_errors == 3
        assert "colour" in caplog.text

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="expected mapping"):
            load_config(path)

    def test_bad_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("max_errors: lots\n")
        with pytest.raises(ValueError, match="max_errors"):
            load_config(path)

        path.write_text("log_level: chatty\n")
        with pytest.raises(ValueError, match="log_level"):
            load_config(path)

        path.write_text("trig_in_degrees: 1\n")
        with pytest.raises(ValueError, match="trig_in_degrees"):
            load_config(path)

    def test_with_overrides(self):
        config = ScriptConfig().with_overrides(log_level="DEBUG", max_errors=None)
        assert config.log_level == "DEBUG"
        assert config.max_errors == 20


class TestConfigInSession:
    """Test that settings reach the engine."""

    def test_radians(self):
        config = ScriptConfig(trig_in_degrees=False)
        source = "DECLARE_VARIABLE DOUBLE X sin(PI / 2)\n"
        with open_session(source, config=config) as session:
            assert session.snapshot()["variables"]["X"] == pytest.approx(1.0)

    def test_default_select_limit(self):
        config = ScriptConfig(default_select_limit=3)
        source = "BEGIN_GUI_DESCR\nUSER_SELECT_MULTIPLE EDGE EDGES\nEND_GUI_DESCR\n"
        with open_session(source, config=config) as session:
            command = session.select_commands["EDGES"]
            assert command.max_selections is None
            assert session.selection_limit(command) == 3
            assert session.complete_selection("EDGES", ["e1", "e2", "e3"])

    def test_table_height(self):
        config = ScriptConfig(table_height=4)
        source = "BEGIN_TABLE T\nSEL_STRING A\nSTRING STRING\nx 1\nEND_TABLE\n"
        with open_session(source, config=config) as session:
            assert session.tables["T"].table_height == 4
