"""Event-driven state machine for a supervised external process.

A ProcessWatch is fed three kinds of events: an output chunk on stdout or
stderr, the process exit, and the expiry of a timer. It never touches the
process itself, so its transitions can be exercised with scripted event
sequences.

    SPAWNED --stdout match-----------> MATCHED
    SPAWNED --begin_settle()---------> SETTLE_WAIT --timer--> CONFIRMED
    any live state --stderr pattern--> FAILED
    any live state --timer-----------> FAILED      (unless SETTLE_WAIT)
    any live state --exit------------> EXITED      (CONFIRMED if clean exit is accepted)
"""

import re
from collections.abc import Callable
from enum import Enum
from typing import Any

STDOUT = "stdout"
STDERR = "stderr"

_TAIL_CHARS = 500
# Output kept per stream while unresolved; enough for any endpoint or error line
_WINDOW_CHARS = 64 * 1024


class WatchState(str, Enum):
    """Lifecycle state of a watched process."""

    SPAWNED = "spawned"
    MATCHED = "matched"
    SETTLE_WAIT = "settle_wait"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXITED = "exited"


TERMINAL_STATES = frozenset(
    {WatchState.MATCHED, WatchState.CONFIRMED, WatchState.FAILED, WatchState.EXITED}
)


class ProcessWatch:
    """Decides the outcome of a process from its output, exit and timer events"""

    def __init__(
        self,
        matcher: Callable[[str], Any] | None = None,
        error_pattern: re.Pattern[str] | None = None,
        accept_clean_exit: bool = False,
    ):
        """Initialize the watch.

        Args:
            matcher: Called with accumulated stdout; a non-None result moves to MATCHED
            error_pattern: A match on accumulated stderr moves to FAILED
            accept_clean_exit: Exit code 0 counts as CONFIRMED instead of EXITED
        """
        self.matcher = matcher
        self.error_pattern = error_pattern
        self.accept_clean_exit = accept_clean_exit

        self.state = WatchState.SPAWNED
        self.match: Any = None
        self.returncode: int | None = None
        self.timed_out = False
        self.rejection: str | None = None
        self._buffers: dict[str, str] = {STDOUT: "", STDERR: ""}

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded(self) -> bool:
        return self.state in (WatchState.MATCHED, WatchState.CONFIRMED)

    def output(self, stream: str = STDOUT) -> str:
        return self._buffers[stream]

    def begin_settle(self) -> WatchState:
        if self.state == WatchState.SPAWNED:
            self.state = WatchState.SETTLE_WAIT
        return self.state

    def on_output(self, stream: str, chunk: str) -> WatchState:
        limit = _TAIL_CHARS if self.finished else _WINDOW_CHARS
        self._buffers[stream] = (self._buffers[stream] + chunk)[-limit:]
        if self.finished:
            return self.state

        if stream == STDERR and self.error_pattern is not None:
            found = self.error_pattern.search(self.output(STDERR))
            if found:
                self.rejection = found.group(0)
                self.state = WatchState.FAILED
                return self.state

        if stream == STDOUT and self.matcher is not None and self.state == WatchState.SPAWNED:
            result = self.matcher(self.output(STDOUT))
            if result is not None:
                self.match = result
                self.state = WatchState.MATCHED

        return self.state

    def on_exit(self, returncode: int) -> WatchState:
        self.returncode = returncode
        if self.finished:
            return self.state

        if returncode == 0 and self.accept_clean_exit:
            self.state = WatchState.CONFIRMED
        else:
            self.state = WatchState.EXITED
        return self.state

    def on_timer(self) -> WatchState:
        if self.finished:
            return self.state

        if self.state == WatchState.SETTLE_WAIT:
            self.state = WatchState.CONFIRMED
        else:
            self.timed_out = True
            self.state = WatchState.FAILED
        return self.state

    def describe_failure(self) -> str:
        """Human readable reason for a FAILED or EXITED outcome"""
        if self.rejection:
            return self.rejection
        if self.timed_out:
            return "timed out"

        stderr = self.output(STDERR).strip()
        if stderr:
            return stderr[-_TAIL_CHARS:]
        if self.returncode is not None:
            return f"exited with code {self.returncode}"
        return self.state.value
