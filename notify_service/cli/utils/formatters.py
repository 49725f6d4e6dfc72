"""Output formatting utilities for CLI commands."""

import click


def success(message: str) -> None:
    """Print a success message in green."""
    click.secho(f"✓ {message}", fg="green")


def error(message: str) -> None:
    """Print an error message in red."""
    click.secho(f"✗ {message}", fg="red", err=True)


def warning(message: str) -> None:
    """Print a warning message in yellow."""
    click.secho(f"⚠ {message}", fg="yellow")


def info(message: str) -> None:
    """Print an info message in blue."""
    click.secho(f"ℹ {message}", fg="blue")


def header(message: str) -> None:
    """Print a header message in cyan bold."""
    click.secho(f"\n{message}", fg="cyan", bold=True)


_STATUS_COLORS = {
    "pending": "blue",
    "in_flight": "cyan",
    "delivered": "green",
    "failed": "red",
    "dead": "magenta",
}


def status_label(status: str) -> str:
    """Colour a queue entry or delivery status."""
    return click.style(status, fg=_STATUS_COLORS.get(status, "white"))


def table(rows: list[dict[str, object]], columns: list[str]) -> None:
    """Print ``rows`` as a left-aligned table; values are str()-ed."""
    if not rows:
        return
    cells = [[str(row.get(col, "") or "") for col in columns] for row in rows]
    widths = [max(len(col), *(len(r[i]) for r in cells)) for i, col in enumerate(columns)]
    click.secho("  ".join(col.upper().ljust(w) for col, w in zip(columns, widths, strict=True)), bold=True)
    for r in cells:
        click.echo("  ".join(value.ljust(w) for value, w in zip(r, widths, strict=True)))
