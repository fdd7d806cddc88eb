"""
Reactive recompute engine.

After every input change the engine re-derives, from scratch:

1. which branch of every IF is live (gating)
2. the frozen SUB_PICTURE list (snapshot rebuild)
3. whether the user may proceed (validation)

Gating is two-phase: every slot of an IF is switched off first, then the
first branch whose condition holds (or the else body) is switched on.
Nested IFs are only visited inside the live slot, so after a pass each IF
has at most one active slot.
"""

import logging
from typing import TYPE_CHECKING, Any, Callable, Iterator, List, Optional, Set

from .interfaces import widget_id_for
from ..ast import (
    Command, IfCommand, CatchError, DeclareVariable, Assignment, SubPicture, InvalidateParam,
    VariableRef, SectionKind, walk_commands,
)
from ..errors import DslError

if TYPE_CHECKING:
    from .context import Session

logger = logging.getLogger(__name__)

ELSE = "else"


def _direct(body: List[Command]) -> Iterator[Command]:
    """Commands of a body, descending into catch-error blocks but not IFs."""
    for command in body:
        if isinstance(command, CatchError):
            yield from _direct(command.body)
        else:
            yield command


class Dispatcher:
    """
    Busy-flag guard for externally triggered entry points.

    Only one pass is ever in flight. A trigger arriving while a pass runs
    is dropped, not queued.
    """

    def __init__(self):
        self.busy = False
        self.dropped = 0

    def dispatch(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Any]:
        if self.busy:
            self.dropped += 1
            logger.debug("dropping re-entrant trigger %s", getattr(fn, "__name__", fn))
            return None
        self.busy = True
        try:
            return fn(*args, **kwargs)
        finally:
            self.busy = False


class ReactiveEngine:
    """Recomputes branch liveness, frozen snapshots and the proceed predicate."""

    def __init__(self, session: "Session"):
        self.session = session

    @property
    def _gui_commands(self) -> List[Command]:
        return self.session.program.commands(SectionKind.GUI)

    # --- Gating ---

    def recompute_branches(self) -> None:
        """Two-phase gating of every IF reachable from the ASM and GUI sections."""
        program = self.session.program
        for kind in (SectionKind.ASM, SectionKind.GUI):
            for command in _direct(program.commands(kind)):
                if isinstance(command, IfCommand):
                    self._gate(command)

    def _gate(self, command: IfCommand) -> None:
        session = self.session

        # phase 1: everything off, nested IFs included
        for index in range(command.slot_count):
            self._switch_off(session.interpreter.branch_body(command, index))
        session.branch_state[command.if_id] = None

        # phase 2: first true branch (or else) on
        live = session.interpreter.live_branch(command)
        if live is None:
            return
        session.branch_state[command.if_id] = ELSE if live == len(command.branches) else live
        body = session.interpreter.branch_body(command, live)
        for child in _direct(body):
            if isinstance(child, IfCommand):
                self._gate(child)
            else:
                self._switch_on(child)

    def _switch_off(self, body: List[Command]) -> None:
        session = self.session
        for child in walk_commands(body):
            if isinstance(child, IfCommand):
                session.branch_state[child.if_id] = None
                continue
            widget_id = widget_id_for(child)
            if widget_id is None:
                continue
            session.binder.set_enabled(widget_id, False)
            requirement = session.requirements.get(widget_id)
            if requirement is not None:
                requirement.active = False
                session.binder.set_required(widget_id, False)

    def _switch_on(self, command: Command) -> None:
        session = self.session
        widget_id = widget_id_for(command)
        if widget_id is None:
            return
        session.binder.set_enabled(widget_id, True)
        requirement = session.requirements.get(widget_id)
        if requirement is not None:
            requirement.active = True
            session.binder.set_required(widget_id, True)

    # --- Snapshots ---

    def rebuild_snapshots(self) -> None:
        """
        Discard the frozen sub-picture list and rebuild it from the GUI section.

        A GUI declaration that owns its name is reset to its default, once
        per pass. Redeclarations the table rejected stay rejected, and an
        INVALIDATE_PARAM between two declarations is replayed. Names fed by
        widgets or table rows are left alone, as are assignments to them.
        IFs only pick their live branch.
        """
        self.session.sub_pictures = []
        self._rebuild(self._gui_commands, set())
        self.session.binder.show_pictures(self.session.global_picture, self.session.sub_pictures)

    def _user_driven(self, name: str) -> bool:
        return name in self.session.ui_params or name in self.session.row_params

    def _rebuild(self, body: List[Command], rebuilt: Set[str]) -> None:
        session = self.session
        interpreter = session.interpreter
        for command in _direct(body):
            if isinstance(command, DeclareVariable):
                self._rebuild_declaration(command, rebuilt)
            elif isinstance(command, InvalidateParam):
                variable = session.symbols.get(command.name)
                if command.name in rebuilt and variable is not None and variable.is_scalar:
                    session.symbols.invalidate(command.name, command.span)
            elif isinstance(command, Assignment):
                if isinstance(command.target, VariableRef) and self._user_driven(command.name):
                    continue
                interpreter.execute(command)
            elif isinstance(command, SubPicture):
                interpreter.execute(command)
            elif isinstance(command, IfCommand):
                live = interpreter.live_branch(command)
                if live is not None:
                    self._rebuild(interpreter.branch_body(command, live), rebuilt)

    def _rebuild_declaration(self, command: DeclareVariable, rebuilt: Set[str]) -> None:
        session = self.session
        symbols = session.symbols
        name = command.name
        if self._user_driven(name) or id(command) in session.shadowed_declarations:
            return
        if name in symbols:
            if name in rebuilt or name not in session.gui_declared:
                # first seen here, e.g. in a branch that just became live
                symbols.declare(name, symbols.get(name), command.span)
                session.shadowed_declarations.add(id(command))
                return
        try:
            value = session.interpreter.materialize(command.type_spec, command.default)
        except DslError as exc:
            logger.debug("rebuild skipped %s: %s", name, exc.diagnostic.message)
            return
        symbols.remove(name, session.dispose_handle)
        symbols.declare(name, value, command.span)
        session.gui_declared.add(name)
        rebuilt.add(name)

    # --- Validation ---

    def revalidate(self) -> bool:
        """Recompute the proceed predicate and repaint required widgets."""
        session = self.session
        allowed = True
        for widget_id, requirement in session.requirements.items():
            if not requirement.active:
                continue
            satisfied = requirement.is_satisfied(session.symbols)
            session.binder.paint(widget_id, satisfied)
            allowed = allowed and satisfied
        session.proceed = allowed
        session.binder.set_proceed(allowed)
        return allowed

    def refresh(self) -> bool:
        """Full reactive pass; returns the new proceed predicate."""
        self.rebuild_snapshots()
        self.recompute_branches()
        allowed = self.revalidate()
        logger.debug("refresh: %d sub-picture(s), may_proceed=%s",
                     len(self.session.sub_pictures), allowed)
        return allowed
