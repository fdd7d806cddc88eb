"""
Tests for command execution: declarations, assignments, widgets,
selections, model queries and table rows.
"""

import pytest
from epascript import HeadlessBinder


def asm(body):
    return f"BEGIN_ASM_DESCR\n{body}\nEND_ASM_DESCR\n"


def gui(body):
    return f"BEGIN_GUI_DESCR\n{body}\nEND_GUI_DESCR\n"


class TestDeclarations:
    """Test the first pass over declarations."""

    def test_scalar_defaults(self, run_script):
        session = run_script(asm(
            "DECLARE_VARIABLE INTEGER COUNT 2\n"
            "DECLARE_VARIABLE DOUBLE LEN COUNT * 1.5\n"
            'DECLARE_VARIABLE STRING NAME "part_" + COUNT\n'
            "DECLARE_VARIABLE BOOL FLAG\n"
            "DECLARE_VARIABLE INTEGER TRUNC 2.9"
        ))
        variables = session.snapshot()["variables"]
        assert variables["COUNT"] == 2
        assert variables["LEN"] == 3.0
        assert variables["NAME"] == "part_2"
        assert variables["FLAG"] is False
        assert variables["TRUNC"] == 2
        assert not session.diagnostics.has_errors

    def test_containers(self, run_script):
        session = run_script(asm(
            "DECLARE_VARIABLE ARRAY INTEGER {1, 2, 3} A\n"
            "DECLARE_VARIABLE MAP {w: 10, h: 20} M\n"
            "DECLARE_VARIABLE STRUCTURE {len: DOUBLE 2.5, name: STRING} S\n"
            'DECLARE_VARIABLE FILE_DESCRIPTOR "w" "out.txt" F\n'
            "DECLARE_VARIABLE REFERENCE R"
        ))
        variables = session.snapshot()["variables"]
        assert variables["A"] == [1, 2, 3]
        assert variables["M"] == {"w": 10, "h": 20}
        assert variables["S"] == {"len": 2.5, "name": ""}
        assert variables["R"] is None
        assert session.symbols.get("F").data.path == "out.txt"

    def test_redeclaration_warns(self, run_script):
        session = run_script(asm(
            "DECLARE_VARIABLE INTEGER X 1\n"
            "DECLARE_VARIABLE INTEGER X 2"
        ))
        assert session.snapshot()["variables"]["X"] == 1
        assert session.diagnostics.codes() == ["W301"]

    def test_invalidate_then_redeclare(self, run_script):
        session = run_script(asm(
            "DECLARE_VARIABLE INTEGER X 1\n"
            "INVALIDATE_PARAM X\n"
            "DECLARE_VARIABLE INTEGER X 2"
        ))
        assert session.snapshot()["variables"]["X"] == 2
        assert session.diagnostics.codes() == []

    def test_gui_redeclaration_survives_refresh(self, run_script):
        session = run_script(gui(
            "USER_INPUT_PARAM INTEGER N 0\n"
            "DECLARE_VARIABLE INTEGER X 1\n"
            "DECLARE_VARIABLE INTEGER X 2"
        ))
        assert session.snapshot()["variables"]["X"] == 1
        assert session.diagnostics.codes() == ["W301"]

        session.set_input("N", 5)
        session.set_input("N", 6)
        assert session.snapshot()["variables"]["X"] == 1
        assert session.diagnostics.codes() == ["W301"]

    def test_gui_invalidate_then_redeclare(self, run_script):
        session = run_script(gui(
            "USER_INPUT_PARAM INTEGER N 0\n"
            "DECLARE_VARIABLE INTEGER X 1\n"
            "INVALIDATE_PARAM X\n"
            "DECLARE_VARIABLE INTEGER X 2"
        ))
        assert session.snapshot()["variables"]["X"] == 2

        session.set_input("N", 5)
        assert session.snapshot()["variables"]["X"] == 2
        assert session.diagnostics.codes() == []

    def test_asm_declaration_not_reset_by_gui(self, run_script):
        session = run_script(
            asm("DECLARE_VARIABLE INTEGER X 1")
            + gui("USER_INPUT_PARAM INTEGER N 0\nDECLARE_VARIABLE INTEGER X 2")
        )
        assert session.snapshot()["variables"]["X"] == 1

        session.set_input("N", 5)
        assert session.snapshot()["variables"]["X"] == 1
        assert session.diagnostics.codes() == ["W301"]


class TestAssignments:
    """Test assignment commands."""

    def test_assignments(self, run_script):
        session = run_script(asm(
            "DECLARE_VARIABLE INTEGER COUNT 2\n"
            "DECLARE_VARIABLE ARRAY INTEGER {1, 2, 3} A\n"
            "DECLARE_VARIABLE MAP {w: 10} M\n"
            "DECLARE_VARIABLE STRUCTURE {len: DOUBLE 2.5} S\n"
            "COUNT = COUNT + 1\n"
            "A[1] = 9\n"
            "M:d = 5\n"
            "S.len = 4"
        ))
        variables = session.snapshot()["variables"]
        assert variables["COUNT"] == 3
        assert variables["A"] == [1, 9, 3]
        assert variables["M"] == {"w": 10, "d": 5}
        assert variables["S"] == {"len": 4.0}
        assert not session.diagnostics.has_errors

    def test_assignment_to_undeclared(self, run_script):
        session = run_script(asm("UNDECLARED = 1"))
        assert session.diagnostics.codes() == ["E301"]
        assert "UNDECLARED" not in session.symbols

    def test_failed_assignment_leaves_value(self, run_script):
        session = run_script(asm(
            "DECLARE_VARIABLE INTEGER COUNT 2\n"
            'COUNT = "many"\n'
            "DECLARE_VARIABLE ARRAY INTEGER {1} A\n"
            "A[5] = 1"
        ))
        variables = session.snapshot()["variables"]
        assert variables["COUNT"] == 2
        assert variables["A"] == [1]
        assert session.diagnostics.codes() == ["E201", "E205"]

    def test_catch_error_absorbs_failures(self, run_script):
        session = run_script(asm(
            "BEGIN_CATCH_ERROR\n"
            "UNDECLARED = 1\n"
            "END_CATCH_ERROR\n"
            "DECLARE_VARIABLE INTEGER AFTER 1"
        ))
        assert session.diagnostics.codes() == []
        assert session.snapshot()["variables"]["AFTER"] == 1


class TestWidgets:
    """Test widget registration and requirements."""

    SCRIPT = gui(
        "USER_INPUT_PARAM DOUBLE LENGTH 100 REQUIRED MIN_VALUE 10 MAX_VALUE 500\n"
        "CHECKBOX_PARAM INTEGER HOLES\n"
        'RADIOBUTTON_PARAM INTEGER MODE "A" "B" "C" REQUIRED\n'
        "SHOW_PARAM STRING LABEL\n"
        "USER_SELECT SURFACE REF1"
    )

    def test_widgets_rendered_in_order(self, run_script, binder):
        run_script(self.SCRIPT)
        assert binder.rendered == [
            ("input_LENGTH", 0),
            ("checkbox_HOLES", 1),
            ("radio_MODE", 2),
            ("show_LABEL", 3),
            ("select_REF1", 4),
        ]

    def test_widget_variables(self, run_script):
        session = run_script(self.SCRIPT)
        variables = session.snapshot()["variables"]
        assert variables["LENGTH"] == 100.0
        assert variables["HOLES"] == 0
        assert variables["MODE"] == -1
        assert variables["LABEL"] == ""
        assert variables["REF1"] is None
        assert session.radio_options["MODE"] == ["A", "B", "C"]
        assert "LABEL" not in session.ui_params
        assert session.ui_params["LENGTH"] == "input_LENGTH"

    def test_requirements(self, run_script, binder):
        session = run_script(self.SCRIPT)
        assert set(session.requirements) == {"input_LENGTH", "radio_MODE", "select_REF1"}
        assert not session.may_proceed
        assert binder.painted == {"input_LENGTH": True, "radio_MODE": False, "select_REF1": False}

        session.set_input("MODE", 1)
        session.complete_selection("REF1", ["srf_1"])
        assert session.may_proceed
        assert binder.proceed is True

    def test_input_range(self, run_script):
        session = run_script(self.SCRIPT)
        assert not session.set_input("LENGTH", 5)
        assert session.diagnostics.codes() == ["E204"]
        assert session.snapshot()["variables"]["LENGTH"] == 100.0

        assert session.set_input("LENGTH", "250")
        assert session.snapshot()["variables"]["LENGTH"] == 250.0

    def test_radio_range(self, run_script):
        session = run_script(self.SCRIPT)
        assert not session.set_input("MODE", 3)
        assert session.diagnostics.codes() == ["E205"]

    def test_unknown_input(self, run_script):
        session = run_script(self.SCRIPT)
        assert not session.set_input("NOPE", 1)
        assert session.diagnostics.codes() == ["E202"]

    def test_default_for(self, run_script):
        session = run_script(
            asm("DECLARE_VARIABLE DOUBLE W 0\nDECLARE_VARIABLE DOUBLE H 0")
            + gui("USER_INPUT_PARAM DOUBLE SIZE 10 DEFAULT_FOR W, H")
        )
        session.set_input("SIZE", 20)
        variables = session.snapshot()["variables"]
        assert variables["W"] == 20.0
        assert variables["H"] == 20.0

    def test_render_failure(self, run_script):
        binder = HeadlessBinder(failing={"input_X"})
        session = run_script(gui("USER_INPUT_PARAM DOUBLE X 1"), binder=binder)
        assert session.diagnostics.codes() == ["E403"]

    def test_pictures_and_config(self, run_script, binder):
        session = run_script(gui(
            'CONFIG_ELEM NO_GUI SCREEN_LOCATION "TOP" 400 300\n'
            'GLOBAL_PICTURE "bracket.gif"'
        ))
        assert session.global_picture == "bracket.gif"
        assert binder.pictures[0] == "bracket.gif"
        assert session.dialog_size == (400, 300)
        assert session.screen_location == "TOP"
        assert session.config_elem.no_gui


class TestSelection:
    """Test USER_SELECT and the selection provider."""

    def test_request_selection(self, run_script, selection):
        selection.picks.append(["srf_1"])
        session = run_script(gui("USER_SELECT SURFACE|PLANE REF1"))
        assert session.request_selection("REF1")
        assert selection.requests == [(["SURFACE", "PLANE"], 1)]
        assert session.snapshot()["variables"]["REF1"] == "srf_1"

    def test_type_variable(self, run_script, selection):
        selection.picks.append(["e1"])
        session = run_script(
            asm('DECLARE_VARIABLE STRING KIND "EDGE|CURVE"')
            + gui("USER_SELECT &KIND REF1")
        )
        session.request_selection("REF1")
        assert selection.requests == [(["EDGE", "CURVE"], 1)]

    def test_multiple(self, run_script):
        session = run_script(gui("USER_SELECT_MULTIPLE EDGE 2 EDGES"))
        assert session.complete_selection("EDGES", ["e1", "e2"])
        assert session.snapshot()["variables"]["EDGES"] == ["e1", "e2"]

    def test_over_limit_disposes_picks(self, run_script, selection):
        session = run_script(gui("USER_SELECT SURFACE REF1"))
        assert not session.complete_selection("REF1", ["a", "b"])
        assert session.diagnostics.codes() == ["E401"]
        assert selection.disposed == ["a", "b"]
        assert session.snapshot()["variables"]["REF1"] is None

    def test_reselect_disposes_previous(self, run_script, selection):
        session = run_script(gui("USER_SELECT SURFACE REF1"))
        session.complete_selection("REF1", ["x"])
        session.complete_selection("REF1", ["y"])
        assert selection.disposed == ["x"]
        assert session.snapshot()["variables"]["REF1"] == "y"

    def test_unknown_select(self, run_script, selection):
        session = run_script(gui("USER_SELECT SURFACE REF1"))
        assert not session.complete_selection("OTHER", ["z"])
        assert session.diagnostics.codes() == ["E401"]
        assert selection.disposed == ["z"]

    def test_close_disposes_handles(self, run_script, selection):
        session = run_script(gui("USER_SELECT_MULTIPLE EDGE 2 EDGES"))
        session.complete_selection("EDGES", ["e1", "e2"])
        with session:
            pass
        assert selection.disposed == ["e1", "e2"]
        assert session.closed


class TestModelQueries:
    """Test measurement and search commands."""

    SCRIPT = asm(
        'SEARCH_MDL_REFS RECURSIVE ASM FEATURE "HOLE*" FOUND\n'
        'SEARCH_MDL_REF ASM FEATURE "HOLE*" FIRST\n'
        "MEASURE_LENGTH FIRST LEN\n"
        "MEASURE_DISTANCE FIRST FIRST DIST"
    )

    def test_search_and_measure(self, run_script, query):
        session = run_script(self.SCRIPT)
        variables = session.snapshot()["variables"]
        assert variables["FOUND"] == ["feat_1", "feat_2"]
        assert variables["FIRST"] == "feat_1"
        assert variables["LEN"] == 40.0
        assert variables["DIST"] == 25.0
        model, type_name, pattern, multiple, options = query.searches[0]
        assert (model, type_name, pattern, multiple) == ("ASM", "FEATURE", "HOLE*", True)
        assert options["recursive"]
        assert not session.diagnostics.has_errors

    def test_result_keeps_declared_kind(self, run_script):
        session = run_script(asm(
            "DECLARE_VARIABLE INTEGER LEN 0\n"
            'SEARCH_MDL_REF ASM FEATURE "HOLE*" FIRST\n'
            "MEASURE_LENGTH FIRST LEN"
        ))
        assert session.snapshot()["variables"]["LEN"] == 40

    def test_without_model_query(self, run_script):
        session = run_script(self.SCRIPT, query=None)
        assert "E402" in session.diagnostics.codes()

    def test_measure_without_selection(self, run_script):
        session = run_script(
            asm("DECLARE_VARIABLE REFERENCE R1")
            + gui("MEASURE_LENGTH R1 LEN")
        )
        assert session.diagnostics.codes() == ["E204"]


TABLE_SCRIPT = (
    asm("DECLARE_VARIABLE DOUBLE LENGTH 0")
    + "BEGIN_TAB_DESCR\n"
    'BEGIN_TABLE SIZES "Sizes"\n'
    "SEL_STRING NAME LENGTH\n"
    "STRING STRING DOUBLE\n"
    '"small" S 10\n'
    '"large" L 20.5\n'
    "END_TABLE\n"
    "END_TAB_DESCR\n"
)


class TestTables:
    """Test table registration and row selection."""

    def test_table_registered(self, run_script, binder):
        session = run_script(TABLE_SCRIPT)
        assert "SIZES" in session.tables
        assert ("table_SIZES", 0) in binder.rendered

    def test_select_row(self, run_script):
        session = run_script(TABLE_SCRIPT)
        assert session.select_table_row("SIZES", 1)
        variables = session.snapshot()["variables"]
        assert variables["SIZES"] == {"SEL_STRING": "large", "NAME": "L", "LENGTH": 20.5}
        assert variables["LENGTH"] == 20.5
        assert session.selected_rows == {"SIZES": 1}

        session.select_table_row("SIZES", 0)
        assert session.snapshot()["variables"]["LENGTH"] == 10.0

    def test_row_writes_gui_declared_scalar(self, run_script):
        session = run_script(
            gui(
                'DECLARE_VARIABLE STRING DIA "none"\n'
                "USER_INPUT_PARAM INTEGER N 0\n"
                'SUB_PICTURE "bolt_" + DIA + ".gif" 0 0'
            )
            + "BEGIN_TAB_DESCR\n"
            "BEGIN_TABLE BOLTS\n"
            "SEL_STRING DIA\n"
            "STRING STRING\n"
            '"m6" "M6"\n'
            "END_TABLE\n"
            "END_TAB_DESCR\n"
        )
        assert session.select_table_row("BOLTS", 0)
        state = session.snapshot()
        assert state["variables"]["DIA"] == "M6"
        assert state["sub_pictures"] == [("bolt_M6.gif", 0, 0)]

        session.set_input("N", 2)
        assert session.snapshot()["variables"]["DIA"] == "M6"
        assert session.row_params == {"DIA"}

    def test_row_out_of_range(self, run_script):
        session = run_script(TABLE_SCRIPT)
        assert not session.select_table_row("SIZES", 5)
        assert session.diagnostics.codes() == ["E205"]
        assert "SIZES" not in session.symbols

    def test_unknown_table(self, run_script):
        session = run_script(TABLE_SCRIPT)
        assert not session.select_table_row("OTHER", 0)
        assert session.diagnostics.codes() == ["E202"]
