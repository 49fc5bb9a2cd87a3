"""valgate.console._rich -- Rich-based terminal backend.

Provides coloured, structured terminal output using the Rich library.
"""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

_THEME = Theme(
    {
        "info": "blue",
        "success": "bold green",
        "warning": "bold yellow",
        "error": "bold red",
        "step.num": "bold cyan",
        "dim": "dim",
        "status.passed": "green",
        "status.warning": "yellow",
        "status.failed": "bold red",
        "status.error": "bold magenta",
        "status.no_results": "bold red",
    }
)


def _cell(value: str) -> Text:
    """Plain text cell; execution status names get their theme colour."""
    style = f"status.{value.lower()}"
    return Text(value, style=style if style in _THEME.styles else "")


class RichBackend:
    """ConsoleProtocol implementation backed by Rich."""

    def __init__(self) -> None:
        self._con = Console(theme=_THEME, highlight=False)

    # -- General messages ---------------------------------------------------

    def info(self, message: str) -> None:
        self._con.print(f"  {message}", style="info", markup=False)

    def success(self, message: str) -> None:
        self._con.print(f"  ✓ {message}", style="success", markup=False)

    def warning(self, message: str) -> None:
        self._con.print(f"  ⚠ {message}", style="warning", markup=False)

    def error(self, message: str) -> None:
        self._con.print(f"  ✗ {message}", style="error", markup=False)

    def raw(self, line: str) -> None:
        self._con.out(line, highlight=False)

    # -- Structured panels --------------------------------------------------

    def panel(self, content: str, *, title: str = "", style: str = "") -> None:
        self._con.print(
            Panel(Text(content), title=title or None, border_style=style or "dim"),
        )

    def table(self, headers: list[str], rows: list[list[str]], *, title: str = "") -> None:
        t = Table(title=title or None, box=box.SIMPLE, show_edge=False, pad_edge=True)
        for h in headers:
            t.add_column(h)
        for r in rows:
            t.add_row(*(_cell(str(c)) for c in r))
        self._con.print(t)

    def kv(self, data: dict[str, str], *, title: str = "") -> None:
        t = Table(
            title=title or None,
            box=box.SIMPLE,
            show_header=False,
            show_edge=False,
            pad_edge=True,
        )
        t.add_column("Key", style="bold", justify="right")
        t.add_column("Value")
        for k, v in data.items():
            t.add_row(Text(k), _cell(v))
        self._con.print(t)

    # -- Run lifecycle ------------------------------------------------------

    def step(self, current: int, total: int, description: str) -> None:
        self._con.print(f"\n  [step.num]\\[{current}/{total}][/] {description}")

    def step_detail(self, message: str) -> None:
        self._con.print(f"    {message}", style="dim", markup=False)

    def gate_result(self, passed: bool, status: str, score: int, elapsed: float) -> None:
        icon = "✓" if passed else "✗"
        word = "passed" if passed else "blocked"
        self._con.print()
        self._con.print(
            Rule(
                f" {icon} Gate {word} ── {status} · {score}/10 · {elapsed:.1f}s ",
                style="green" if passed else "red",
            ),
        )
