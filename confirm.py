"""Confirmation state machine: the only path from a ranked fix to a spawned process.

    PRESENTING -> AWAITING_INPUT -> VALIDATING -> EXECUTING -> COMPLETED
                                        |  ^
                                        |  +-- (invalid input) AWAITING_INPUT
                                        +-> REJECTED

PRESENTING goes straight to REJECTED when there is nothing to offer (or
in dry-run). EXECUTING can only be entered from VALIDATING with an
ExecuteFix decision, and the fix runner is only called from EXECUTING.
"""

import re
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass
from enum import Enum

from protocol import ExecutionResult, InternalError
from term import (
    C_BOLD, C_DIM, C_GREEN, C_ITALIC, C_RED, C_RESET, C_YELLOW, status,
)


class ConfirmState(Enum):
    PRESENTING = "presenting"
    AWAITING_INPUT = "awaiting_input"
    VALIDATING = "validating"
    EXECUTING = "executing"
    COMPLETED = "completed"
    REJECTED = "rejected"


# Valid state transitions: current_state -> set of valid next states
STATE_TRANSITIONS = {
    ConfirmState.PRESENTING: {ConfirmState.AWAITING_INPUT, ConfirmState.REJECTED},
    ConfirmState.AWAITING_INPUT: {ConfirmState.VALIDATING},
    ConfirmState.VALIDATING: {
        ConfirmState.EXECUTING,
        ConfirmState.REJECTED,
        ConfirmState.AWAITING_INPUT,
    },
    ConfirmState.EXECUTING: {ConfirmState.COMPLETED},
    ConfirmState.COMPLETED: set(),
    ConfirmState.REJECTED: set(),
}

TERMINAL_STATES = {ConfirmState.COMPLETED, ConfirmState.REJECTED}


class InvalidTransition(InternalError):
    pass


# --- Decisions ---

@dataclass(frozen=True)
class ExecuteFix:
    index: int  # 1-based, as typed by the user


@dataclass(frozen=True)
class Reject:
    pass


_RE_SELECTION = re.compile(r"[0-9]+")


def validate_input(text, fix_count):
    """Map one line of input to a decision; None means ask again.

    Empty or whitespace -> Reject. A number in 1..fix_count -> ExecuteFix.
    Anything else (out of range, negative, words) -> None.
    """
    stripped = (text or "").strip()
    if not stripped:
        return Reject()
    if not _RE_SELECTION.fullmatch(stripped):
        return None
    digits = stripped.lstrip("0") or "0"
    if len(digits) > len(str(fix_count)):
        return None
    n = int(digits)
    if 1 <= n <= fix_count:
        return ExecuteFix(n)
    return None


# --- Default I/O ---

def execute_fix(command):
    """Run an approved fix with the terminal attached."""
    start = time.monotonic()
    shell = shutil.which("bash")
    try:
        proc = subprocess.run(command, shell=True, executable=shell,
                              stdin=sys.stdin, stdout=sys.stdout, stderr=sys.stderr)
    except OSError as e:
        return ExecutionResult(command, 127, stderr=str(e),
                               duration=time.monotonic() - start)
    return ExecutionResult(command, proc.returncode, duration=time.monotonic() - start)


def read_line(prompt):
    """One line from the user; EOF and Ctrl-C count as an empty answer."""
    try:
        return input(prompt)
    except (EOFError, KeyboardInterrupt):
        print(file=sys.stderr)
        return ""


def render_fixes(fixes, learning_mode=False):
    if not fixes:
        status(f"{C_DIM}?{C_RESET}", "No fix available for this failure.")
        return
    print(file=sys.stderr)
    for i, fix in enumerate(fixes, 1):
        color = C_YELLOW if fix.risk_level.value == "medium" else C_GREEN
        status(f"{C_BOLD}{i}{C_RESET}",
               f"{C_BOLD}{fix.command}{C_RESET}  {color}[{fix.risk_level.value} risk]{C_RESET}")
        status(" ", f"{C_DIM}{C_ITALIC}{fix.explanation}{C_RESET}")
        if learning_mode:
            status(" ", f"{C_DIM}why: {fix.reasoning}; score {fix.score:.2f}{C_RESET}")
    print(file=sys.stderr)


class ConfirmationMachine:
    """Drives one confirmation from presentation to a terminal state.

    read_line(prompt) -> str and run_fix(command) -> ExecutionResult are
    injectable; nothing else here has side effects beyond output.
    """

    PROMPT = "  ?  Run which fix? [1-{n}, Enter to skip] "

    def __init__(self, fixes, original_exit_code, read_line=read_line,
                 run_fix=execute_fix, render=render_fixes, learning_mode=False):
        self.fixes = tuple(fixes)
        self.original_exit_code = original_exit_code
        self._read_line = read_line
        self._run_fix = run_fix
        self._render = render
        self.learning_mode = learning_mode

        self.state = ConfirmState.PRESENTING
        self.trail = [ConfirmState.PRESENTING]
        self.decision = None
        self.selected = None
        self.result = None

    def _to(self, new_state):
        if new_state not in STATE_TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.trail.append(new_state)

    @property
    def exit_code(self):
        if self.state is ConfirmState.COMPLETED:
            return self.result.exit_code
        if self.state is ConfirmState.REJECTED:
            return self.original_exit_code
        raise InternalError(f"no exit code in state {self.state.value}")

    def present(self, dry_run=False):
        self._render(self.fixes, self.learning_mode)
        if not self.fixes or dry_run:
            self.decision = Reject()
            self._to(ConfirmState.REJECTED)
        else:
            self._to(ConfirmState.AWAITING_INPUT)

    def step(self):
        """AWAITING_INPUT -> VALIDATING -> next state, for one line of input."""
        line = self._read_line(self.PROMPT.format(n=len(self.fixes)))
        self._to(ConfirmState.VALIDATING)
        decision = validate_input(line, len(self.fixes))

        if decision is None:
            status(f"{C_RED}?{C_RESET}",
                   f"Enter a number from 1 to {len(self.fixes)}, or press Enter to skip.")
            self._to(ConfirmState.AWAITING_INPUT)
        elif isinstance(decision, ExecuteFix):
            self.decision = decision
            self._execute(decision)
        else:
            self.decision = decision
            self._to(ConfirmState.REJECTED)

    def _execute(self, decision):
        self._to(ConfirmState.EXECUTING)
        self.selected = self.fixes[decision.index - 1]
        status(f"{C_GREEN}▸{C_RESET}", f"Running: {C_BOLD}{self.selected.command}{C_RESET}")
        self.result = self._run_fix(self.selected.command)
        self._to(ConfirmState.COMPLETED)

    def run(self, dry_run=False):
        """Present, then read input until a terminal state. Returns the exit code."""
        self.present(dry_run=dry_run)
        while self.state not in TERMINAL_STATES:
            self.step()
        self.report()
        return self.exit_code

    def report(self):
        if self.state is ConfirmState.COMPLETED:
            if self.result.exit_code == 0:
                status(f"{C_GREEN}✔{C_RESET}", "Fix succeeded.")
            else:
                status(f"{C_RED}✗{C_RESET}", f"Fix failed (exit {self.result.exit_code}).")
        elif self.fixes:
            status(f"{C_DIM}▸{C_RESET}", "No fix applied.")
