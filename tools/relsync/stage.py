# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
from typing import Any
from typing import Optional


class InvalidState(Exception):
    """A fatal error: the run cannot continue from the current state."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def require(condition: bool, message: Optional[str] = None) -> None:
    if not condition:
        raise InvalidState(message or "Requirement not met")


class Stage:
    """A named step of a script, printed as it starts and as it finishes.

    Use as a context manager. Inside the block, call ok(), warn() or skip()
    to finish the stage with a message, progress() to print intermediate
    status, and fail() to mark it as failed. If the block finishes without
    any of these, the stage is reported as ok. If an exception escapes the
    block, the stage is reported as failed with the exception message.

    If a failures list is passed, fail() records the failure in it, which
    lets a caller collect several failures before deciding to abort.
    """

    def __init__(
        self,
        name: str,
        description: str,
        failures: Optional[list[str]] = None,
        parent: Optional["Stage"] = None,
    ) -> None:
        self.name = name
        self.description = description
        self.failures = failures
        self.parent = parent
        self.done = False

    def indent(self) -> str:
        depth = 0
        p = self.parent
        while p is not None:
            depth += 1
            p = p.parent
        return "  " * depth

    def _print(self, status: str, message: str) -> None:
        print(f"{self.indent()}[{status}] {self.name}: {message}", flush=True)

    def __enter__(self) -> "Stage":
        self._print(" .... ", self.description)
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        if self.done:
            return
        if exc_type is not None:
            message = getattr(exc_value, "message", None) or str(exc_value)
            self._print(" FAIL ", message or exc_type.__name__)
            self.done = True
        else:
            self.ok()

    def ok(self, message: str = "") -> None:
        self._print("  OK  ", message or "done")
        self.done = True

    def warn(self, message: str) -> None:
        self._print(" WARN ", message)
        self.done = True

    def skip(self, message: str) -> None:
        self._print(" SKIP ", message)
        self.done = True

    def progress(self, message: str) -> None:
        print(f"{self.indent()}         ... {message}", flush=True)

    def fail(self, message: str) -> InvalidState:
        """Mark the stage as failed.

        Returns the exception for the caller to raise (`raise s.fail(...)`).
        """
        self._print(" FAIL ", message)
        self.done = True
        if self.failures is not None:
            self.failures.append(f"{self.name}: {message}")
        return InvalidState(message)
