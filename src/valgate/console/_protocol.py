"""valgate.console._protocol -- ConsoleProtocol definition.

Pure standard-library typing.Protocol for the valgate terminal output.
No external dependencies allowed in this file.
"""

from __future__ import annotations

from typing import Protocol


class ConsoleProtocol(Protocol):
    """valgate terminal output protocol.

    **General messages**::

        console.info("Found 42 task documents")
        console.success("Gate passed")
        console.warning("2 documents could not be parsed")
        console.error("Cannot read task source tree")

    **Structured panels**::

        console.panel("3 critical issues", title="Blocked", style="red")
        console.table(["Task", "Status"], [["input", "PASSED"]], title="Results")
        console.kv({"Status": "PASSED", "Score": "9/10"})

    **Run lifecycle**::

        console.step(1, 5, "Discovering tasks...")
        console.step_detail("12 tasks, 0 failures")
        console.gate_result(True, "PASSED", 9, 12.4)
    """

    # -- General messages ---------------------------------------------------

    def info(self, message: str) -> None:
        """Informational message."""
        ...

    def success(self, message: str) -> None:
        """Success / positive-outcome message."""
        ...

    def warning(self, message: str) -> None:
        """Warning message."""
        ...

    def error(self, message: str) -> None:
        """Error message."""
        ...

    def raw(self, line: str) -> None:
        """Print a line verbatim (CI workflow commands)."""
        ...

    # -- Structured panels --------------------------------------------------

    def panel(self, content: str, *, title: str = "", style: str = "") -> None:
        """Display *content* in a bordered panel."""
        ...

    def table(self, headers: list[str], rows: list[list[str]], *, title: str = "") -> None:
        """Display a table with *headers* and *rows*."""
        ...

    def kv(self, data: dict[str, str], *, title: str = "") -> None:
        """Display key-value pairs."""
        ...

    # -- Run lifecycle ------------------------------------------------------

    def step(self, current: int, total: int, description: str) -> None:
        """Display a pipeline step indicator ``[current/total] description``."""
        ...

    def step_detail(self, message: str) -> None:
        """Display an indented detail line under the current step."""
        ...

    def gate_result(self, passed: bool, status: str, score: int, elapsed: float) -> None:
        """Display the end-of-run gate banner."""
        ...
