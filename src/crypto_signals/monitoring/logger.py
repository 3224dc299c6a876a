"""Rich rendering for operators watching the monitor in a terminal."""

from __future__ import annotations

from typing import Any, Mapping

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from crypto_signals.signals.models import Signal, SignalDirection

_STYLES = {
    "info": "cyan",
    "success": "green",
    "warning": "yellow",
    "error": "red",
}


def _label(key: Any) -> str:
    return str(key).replace("_", " ").title()


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value) or "-"
    return str(value)


class SignalConsole:
    """Console output for lifecycle events, signals and status snapshots."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console()

    @property
    def console(self) -> Console:
        return self._console

    def log_event(
        self,
        message: str,
        *,
        level: str = "info",
        details: Mapping[str, Any] | None = None,
    ) -> None:
        style = _STYLES.get(level, "white")
        if not details:
            self._console.print(f"[{style}]{message}[/{style}]")
            return
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style="bold", justify="right")
        grid.add_column()
        for key, value in details.items():
            grid.add_row(_label(key), _fmt(value))
        self._console.print(Panel(grid, title=f"[bold]{message}", border_style=style, expand=False))

    def info(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        self.log_event(message, level="info", details=details)

    def success(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        self.log_event(message, level="success", details=details)

    def warning(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        self.log_event(message, level="warning", details=details)

    def error(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        self.log_event(message, level="error", details=details)

    def log_signal(self, signal: Signal) -> None:
        colour = "green" if signal.direction is SignalDirection.LONG else "red"
        rows = [
            ("Direction", f"[bold {colour}]{signal.direction.value}[/bold {colour}]"),
            ("Entry", f"{signal.entry:.6g}"),
            ("Stop Loss", f"{signal.targets.stop_loss:.6g} (-{signal.potential_loss():.2f}%)"),
        ]
        rows.extend(
            (f"TP{n}", f"{target:.6g} (+{signal.potential_profit(n - 1):.2f}%)")
            for n, target in enumerate(signal.targets.take_profits, start=1)
        )
        rows.extend(
            [
                ("Confidence", f"{signal.confidence:.1f}/10 ({signal.strength})"),
                ("R:R", f"{signal.risk_reward():.2f}"),
                ("Strategy", f"{signal.strategy} / {signal.timeframe}"),
                ("Reasoning", "\n".join(signal.reasoning)),
            ]
        )
        table = Table(title=f"{signal.pair} on {signal.exchange}", show_header=False, show_lines=True)
        table.add_column(style="bold")
        table.add_column()
        for name, value in rows:
            table.add_row(name, value)
        self._console.print(table)

    def log_status(self, title: str, status: Mapping[str, Any]) -> None:
        table = Table(title=title, show_lines=True)
        table.add_column("Metric")
        table.add_column("Value", justify="right")
        for key, value in status.items():
            table.add_row(_label(key), _fmt(value))
        self._console.print(table)
