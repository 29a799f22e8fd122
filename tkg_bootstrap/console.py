"""
Operator output and the fatal error type.

All user-facing text goes through the shared rich consoles so styling stays
consistent between the installer and the cleanup command. Warnings and
errors go to standard error.
"""

from questionary import Style
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel

console = Console()
err_console = Console(stderr=True)

PROMPT_STYLE = Style([
    ("qmark", "fg:cyan bold"),
    ("question", "bold"),
    ("answer", "fg:green"),
    ("pointer", "fg:cyan bold"),
    ("highlighted", "fg:cyan"),
    ("selected", "fg:green"),
])


class FatalError(Exception):
    """Unrecoverable problem; the command stops and the operator re-runs it."""

    def __init__(self, *lines: str):
        self.lines = [line for line in lines if line]
        super().__init__("\n".join(self.lines))


def fatal(*lines: str):
    raise FatalError(*lines)


# ─────────────────────────────────────────────────────────────────────────────
# PRINTING
# ─────────────────────────────────────────────────────────────────────────────

def banner(*lines: str, style: str = "blue"):
    body = "\n".join(f"[bold]{line}[/bold]" for line in lines)
    console.print(Panel(body, border_style=style))


def message(*lines: str):
    for line in lines:
        console.print(f"[dim]{line}[/dim]")


def success(text: str):
    console.print(f"[green]✓[/green] {text}")


def warn(text: str):
    err_console.print(f"[yellow]⚠ {escape(text)}[/yellow]")


def error(*lines: str):
    for line in lines:
        err_console.print(f"[red]❌ {escape(line)}[/red]")


def show_call(text: str):
    console.print(f"[cyan]→ {text}[/cyan]")
