"""
Tests for the reactive engine: IF gating, sub-picture snapshots,
validation and the busy-flag dispatcher.
"""

import pytest
from epascript import HeadlessBinder
from epascript.ast import IfCommand, SectionKind
from epascript.runtime import Dispatcher
from epascript.runtime.values import string_var


GATED = (
    "BEGIN_GUI_DESCR\n"
    "CHECKBOX_PARAM INTEGER HOLES\n"
    "IF HOLES\n"
    "  USER_INPUT_PARAM STRING DIA REQUIRED\n"
    "ELSE\n"
    "  SHOW_PARAM STRING NOTE\n"
    "END_IF\n"
    "END_GUI_DESCR\n"
)


def if_ids(session):
    return [c.if_id for c in session.program.commands(SectionKind.GUI) if isinstance(c, IfCommand)]


class TestGating:
    """Test branch liveness and widget gating."""

    def test_dormant_widgets_prepared(self, run_script, binder):
        session = run_script(GATED)
        rendered = [widget_id for widget_id, _ in binder.rendered]
        assert rendered == ["checkbox_HOLES", "input_DIA", "show_NOTE"]
        assert "DIA" in session.symbols

    def test_else_branch_live(self, run_script, binder):
        session = run_script(GATED)
        (if_id,) = if_ids(session)
        assert session.branch_state == {if_id: "else"}
        assert binder.enabled["input_DIA"] is False
        assert binder.enabled["show_NOTE"] is True
        assert not session.requirements["input_DIA"].active
        assert binder.required["input_DIA"] is False
        assert session.may_proceed

    def test_switching_branches(self, run_script, binder):
        session = run_script(GATED)
        (if_id,) = if_ids(session)

        session.set_input("HOLES", 1)
        assert session.branch_state == {if_id: 0}
        assert binder.enabled["input_DIA"] is True
        assert binder.enabled["show_NOTE"] is False
        assert binder.required["input_DIA"] is True
        assert not session.may_proceed

        session.set_input("DIA", "M6")
        assert session.may_proceed

        session.set_input("HOLES", 0)
        assert session.branch_state == {if_id: "else"}
        assert binder.enabled["input_DIA"] is False

    def test_no_branch_live(self, run_script):
        session = run_script(
            "BEGIN_GUI_DESCR\n"
            "USER_INPUT_PARAM INTEGER N 0\n"
            "IF N > 0\n"
            "  SHOW_PARAM STRING A\n"
            "ELSE_IF N < 0\n"
            "  SHOW_PARAM STRING B\n"
            "END_IF\n"
            "END_GUI_DESCR\n"
        )
        (if_id,) = if_ids(session)
        assert session.branch_state == {if_id: None}
        session.set_input("N", -2)
        assert session.branch_state == {if_id: 1}

    def test_nested_if(self, run_script, binder):
        session = run_script(
            "BEGIN_GUI_DESCR\n"
            "CHECKBOX_PARAM INTEGER A\n"
            "CHECKBOX_PARAM INTEGER B\n"
            "IF A\n"
            "  IF B\n"
            "    SHOW_PARAM STRING INNER\n"
            "  END_IF\n"
            "END_IF\n"
            "END_GUI_DESCR\n"
        )
        outer = session.program.commands(SectionKind.GUI)[2]
        inner = outer.branches[0].body[0]
        assert binder.enabled["show_INNER"] is False

        session.set_input("B", 1)
        session.set_input("A", 1)
        assert session.branch_state == {outer.if_id: 0, inner.if_id: 0}
        assert binder.enabled["show_INNER"] is True

        session.set_input("A", 0)
        assert session.branch_state == {outer.if_id: None, inner.if_id: None}
        assert binder.enabled["show_INNER"] is False

    def test_failing_condition_is_false(self, run_script):
        session = run_script(
            "BEGIN_GUI_DESCR\n"
            "IF MISSING > 1\n"
            "  SHOW_PARAM STRING A\n"
            "ELSE\n"
            "  SHOW_PARAM STRING B\n"
            "END_IF\n"
            "END_GUI_DESCR\n"
        )
        (if_id,) = if_ids(session)
        assert session.branch_state == {if_id: "else"}
        assert "E202" in session.diagnostics.codes()

    def test_refresh_is_idempotent(self, run_script, binder):
        session = run_script(GATED)
        session.set_input("HOLES", 1)
        before = session.snapshot()
        enabled = dict(binder.enabled)
        session.refresh()
        session.refresh()
        assert session.snapshot() == before
        assert binder.enabled == enabled


class TestSnapshots:
    """Test frozen SUB_PICTURE snapshots."""

    SCRIPT = (
        "BEGIN_ASM_DESCR\n"
        'DECLARE_VARIABLE STRING SIZE "M6"\n'
        "END_ASM_DESCR\n"
        "BEGIN_GUI_DESCR\n"
        'SUB_PICTURE "img_" + SIZE + ".gif" 10 20\n'
        "END_GUI_DESCR\n"
    )

    def test_sub_picture_frozen(self, run_script, binder):
        session = run_script(self.SCRIPT)
        assert session.snapshot()["sub_pictures"] == [("img_M6.gif", 10, 20)]
        assert [p.as_tuple() for p in binder.pictures[1]] == [("img_M6.gif", 10, 20)]

    def test_gating_does_not_touch_snapshots(self, run_script):
        session = run_script(self.SCRIPT)
        session.symbols.set("SIZE", string_var("M8"))
        session.engine.recompute_branches()
        assert session.snapshot()["sub_pictures"] == [("img_M6.gif", 10, 20)]

        session.engine.rebuild_snapshots()
        assert session.snapshot()["sub_pictures"] == [("img_M8.gif", 10, 20)]

    def test_input_rebuilds_snapshots(self, run_script):
        session = run_script(self.SCRIPT)
        session.set_input("SIZE", "M10")
        assert session.snapshot()["sub_pictures"] == [("img_M10.gif", 10, 20)]

    def test_gui_declarations_rerun(self, run_script):
        session = run_script(
            "BEGIN_GUI_DESCR\n"
            "USER_INPUT_PARAM INTEGER N 2\n"
            "DECLARE_VARIABLE INTEGER TOTAL N * 10\n"
            'SUB_PICTURE "p" + TOTAL + ".gif" 0 0\n'
            "END_GUI_DESCR\n"
        )
        assert session.snapshot()["sub_pictures"] == [("p20.gif", 0, 0)]
        session.set_input("N", 3)
        state = session.snapshot()
        assert state["variables"]["TOTAL"] == 30
        assert state["sub_pictures"] == [("p30.gif", 0, 0)]
        assert "W301" not in session.diagnostics.codes()

    def test_sub_picture_in_live_branch_only(self, run_script):
        session = run_script(
            "BEGIN_GUI_DESCR\n"
            "USER_INPUT_PARAM DOUBLE LENGTH 100\n"
            "IF LENGTH > 50\n"
            '  SUB_PICTURE "long.gif" 0 0\n'
            "ELSE\n"
            '  SUB_PICTURE "short.gif" 0 0\n'
            "END_IF\n"
            "END_GUI_DESCR\n"
        )
        assert session.snapshot()["sub_pictures"] == [("long.gif", 0, 0)]
        session.set_input("LENGTH", 20)
        assert session.snapshot()["sub_pictures"] == [("short.gif", 0, 0)]


class TestRebuildPolicy:
    """Test that refreshes respect the declaration policy and report failures once."""

    def test_redeclaration_in_branch_that_becomes_live(self, run_script):
        session = run_script(
            "BEGIN_GUI_DESCR\n"
            "CHECKBOX_PARAM INTEGER FLAG\n"
            "DECLARE_VARIABLE INTEGER X 1\n"
            "IF FLAG\n"
            "  DECLARE_VARIABLE INTEGER X 2\n"
            "END_IF\n"
            "END_GUI_DESCR\n"
        )
        assert session.snapshot()["variables"]["X"] == 1
        assert session.diagnostics.codes() == []

        session.set_input("FLAG", 1)
        assert session.snapshot()["variables"]["X"] == 1
        assert session.diagnostics.codes() == ["W301"]

        session.set_input("FLAG", 0)
        session.set_input("FLAG", 1)
        assert session.snapshot()["variables"]["X"] == 1
        assert session.diagnostics.codes() == ["W301"]

    def test_declaration_in_branch_that_becomes_live(self, run_script):
        session = run_script(
            "BEGIN_GUI_DESCR\n"
            "CHECKBOX_PARAM INTEGER FLAG\n"
            "IF FLAG\n"
            "  DECLARE_VARIABLE INTEGER Y 7\n"
            "END_IF\n"
            "END_GUI_DESCR\n"
        )
        assert "Y" not in session.symbols
        session.set_input("FLAG", 1)
        assert session.snapshot()["variables"]["Y"] == 7
        assert session.diagnostics.codes() == []

    def test_failures_reported_once(self, run_script):
        session = run_script(
            "BEGIN_GUI_DESCR\n"
            "USER_INPUT_PARAM INTEGER N 0\n"
            "DECLARE_VARIABLE INTEGER T 0\n"
            "T = MISSING_A\n"
            "IF MISSING_B > 1\n"
            "  SHOW_PARAM STRING A\n"
            "END_IF\n"
            "END_GUI_DESCR\n"
        )
        assert session.diagnostics.codes() == ["E202", "E202"]

        for value in range(1, 21):
            session.set_input("N", value)
        assert session.snapshot()["variables"]["N"] == 20
        assert session.diagnostics.codes() == ["E202", "E202"]
        assert session.diagnostics.error_count == 2


class ReentrantBinder(HeadlessBinder):
    """Binder that tries to trigger another input while a pass runs."""

    session = None
    nested_results = []

    def set_proceed(self, allowed):
        super().set_proceed(allowed)
        if self.session is not None:
            self.nested_results.append(self.session.set_input("N", 99))


class TestDispatcher:
    """Test the busy-flag guard."""

    def test_reentrant_call_dropped(self):
        dispatcher = Dispatcher()
        calls = []

        def inner():
            calls.append("inner")

        def outer():
            calls.append("outer")
            assert dispatcher.dispatch(inner) is None
            return "done"

        assert dispatcher.dispatch(outer) == "done"
        assert calls == ["outer"]
        assert dispatcher.dropped == 1
        assert not dispatcher.busy

    def test_busy_cleared_after_error(self):
        dispatcher = Dispatcher()

        def fail():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            dispatcher.dispatch(fail)
        assert not dispatcher.busy
        assert dispatcher.dispatch(lambda: 1) == 1

    def test_session_drops_nested_trigger(self, run_script):
        binder = ReentrantBinder()
        binder.nested_results = []
        session = run_script(
            "BEGIN_GUI_DESCR\nUSER_INPUT_PARAM INTEGER N 1\nEND_GUI_DESCR\n",
            binder=binder,
        )
        binder.session = session
        assert session.set_input("N", 5)
        assert binder.nested_results == [False]
        assert session.snapshot()["variables"]["N"] == 5
        assert session.dispatcher.dropped == 1
