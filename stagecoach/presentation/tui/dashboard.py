"""
Dashboard TUI

Architectural Intent:
- Textual-based read-only view of one plan's persisted state
- One row per node, one column per stage, showing the latest outcome
- Never writes state; safe to run next to an active orchestrator
- Configurable refresh interval (+/- keys) and row pagination (n/p keys)
"""

from textual.app import App, ComposeResult
from textual.widgets import Header, Footer, DataTable, Log
from textual.containers import Vertical
from rich.text import Text
from typing import Optional
import asyncio
import logging
from datetime import datetime

from stagecoach.domain.entities.deployment_state import DeploymentState
from stagecoach.domain.ports.state_store_port import StateStorePort

logger = logging.getLogger(__name__)


OUTCOME_STYLES = {
    "success": "green",
    "skipped": "cyan",
    "reboot_pending": "yellow",
    "failed": "bold red",
}


def build_rows(state: DeploymentState) -> list[tuple[str, ...]]:
    """Node x stage grid of latest outcomes; '-' where a node has no result yet."""
    rows = []
    for node in state.node_set:
        cells = [node]
        for stage_id in state.stage_sequence:
            latest = state.latest_result(stage_id, node)
            cells.append(latest.outcome.value if latest else "-")
        if node in state.remediation:
            cells[0] = f"{node} (remediation)"
        rows.append(tuple(cells))
    return rows


class Dashboard(App):
    """A Textual app showing the progress of a Stagecoach plan."""

    CSS = """
    Screen {
        layout: vertical;
    }
    DataTable {
        height: 2fr;
        border: solid green;
    }
    Log {
        height: 1fr;
        border: solid yellow;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "refresh", "Refresh"),
        ("+", "increase_interval", "Slower"),
        ("-", "decrease_interval", "Faster"),
        ("n", "next_page", "Next Page"),
        ("p", "prev_page", "Prev Page"),
    ]

    def __init__(
        self,
        state_store: StateStorePort,
        plan_id: str,
        refresh_interval: float = 5.0,
    ):
        super().__init__()
        self.state_store = state_store
        self.plan_id = plan_id
        self._refresh_interval: float = refresh_interval
        self._page: int = 0
        self._page_size: int = 20
        self._log_max_lines: int = 500
        self._log_lines: list[str] = []
        self._timer = None
        self._last_status: Optional[str] = None
        self._state: Optional[DeploymentState] = None

    def compose(self) -> ComposeResult:
        yield Header()
        yield Vertical(DataTable(id="plan_table"), Log(id="activity_log"))
        yield Footer()

    def on_mount(self) -> None:
        self.title = f"Stagecoach: {self.plan_id}"
        self.log_message("Stagecoach Dashboard Initialized.", severity="info")
        self.log_message(
            f"Refresh interval: {self._refresh_interval}s (use +/- to adjust)",
            severity="info",
        )
        self._timer = self.set_interval(self._refresh_interval, self._update_plan_status)
        self.call_later(self._update_plan_status)

    def log_message(self, message: str, severity: str = "info") -> None:
        log_widget = self.query_one(Log)
        timestamp = datetime.now().strftime("%H:%M:%S")
        prefix = severity.upper()

        line = f"[{timestamp}] [{prefix}] {message}"
        self._log_lines.append(line)

        # Cap log growth
        if len(self._log_lines) > self._log_max_lines:
            self._log_lines = self._log_lines[-self._log_max_lines:]

        log_widget.write_line(line)

    async def action_refresh(self) -> None:
        await self._update_plan_status()

    def action_increase_interval(self) -> None:
        self._refresh_interval = min(60.0, self._refresh_interval + 1.0)
        self._restart_timer()
        self.log_message(
            f"Refresh interval: {self._refresh_interval}s", severity="info"
        )

    def action_decrease_interval(self) -> None:
        self._refresh_interval = max(1.0, self._refresh_interval - 1.0)
        self._restart_timer()
        self.log_message(
            f"Refresh interval: {self._refresh_interval}s", severity="info"
        )

    def action_next_page(self) -> None:
        total = len(self._state.node_set) if self._state else 0
        max_page = max(0, total - 1) // self._page_size
        if self._page < max_page:
            self._page += 1
            self.log_message(f"Page {self._page + 1}", severity="info")
            self._render_table()

    def action_prev_page(self) -> None:
        if self._page > 0:
            self._page -= 1
            self.log_message(f"Page {self._page + 1}", severity="info")
            self._render_table()

    def _restart_timer(self) -> None:
        if self._timer:
            self._timer.stop()
        self._timer = self.set_interval(self._refresh_interval, self._update_plan_status)

    async def _update_plan_status(self) -> None:
        try:
            await self.update_plan_status()
        except Exception as e:
            logger.warning("Dashboard could not read state for %s: %s", self.plan_id, e)
            self.log_message(f"Error reading state: {e}", severity="error")

    async def update_plan_status(self) -> None:
        loop = asyncio.get_running_loop()
        state = await loop.run_in_executor(None, self.state_store.load, self.plan_id)
        if state is None:
            self.log_message(f"No state for plan {self.plan_id} yet", severity="warning")
            return

        self._state = state
        status = state.status.value
        if state.current_stage_id:
            status = f"{status}({state.current_stage_id})"
        if status != self._last_status:
            severity = {
                "Halted": "error",
                "PausedForReboot": "warning",
            }.get(state.status.value, "info")
            reason = f": {state.status_reason}" if state.status_reason else ""
            self.log_message(f"{status}{reason}", severity=severity)
            self._last_status = status
        self._render_table()

    def _render_table(self) -> None:
        if self._state is None:
            return
        table = self.query_one(DataTable)
        table.clear(columns=True)
        table.add_columns("Node", *self._state.stage_sequence)

        rows = build_rows(self._state)
        start = self._page * self._page_size
        for row in rows[start:start + self._page_size]:
            styled = [row[0]] + [Text(c, style=OUTCOME_STYLES.get(c, "")) for c in row[1:]]
            table.add_row(*styled, key=row[0])
