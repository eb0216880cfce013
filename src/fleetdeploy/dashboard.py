"""TUI dashboard showing live output per host."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from textual.app import App, ComposeResult
from textual.containers import Grid
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker, WorkerState

from .executor import HostStatus, StatusCallback
from .listeners import CallbackListener, ListenerChain, ListenerFactory
from .models import FleetOperationReport, HostIdentity

STATUS_ICONS = {
    HostStatus.PENDING: ("○", "dim"),
    HostStatus.CONNECTING: ("◌", "yellow"),
    HostStatus.RUNNING: ("●", "yellow"),
    HostStatus.SUCCESS: ("✔", "green"),
    HostStatus.FAILED: ("✘", "red"),
    HostStatus.TIMED_OUT: ("⧗", "red"),
}

FINISHED = (HostStatus.SUCCESS, HostStatus.FAILED, HostStatus.TIMED_OUT)

# (listener_factory, on_status) -> report
Operation = Callable[[ListenerFactory, StatusCallback], FleetOperationReport]


class HostPanel(Static):
    """A panel displaying output for a single host."""

    status: reactive[HostStatus] = reactive(HostStatus.PENDING)

    def __init__(self, host: HostIdentity, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host = host
        self._pending: list[str] = []

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), classes="header")
        yield RichLog(highlight=True, markup=False, wrap=True, auto_scroll=True)

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        return (
            f"[{color}]{icon}[/] [{color}][bold]{self.host.internal_name}[/bold][/] "
            f"[dim]{self.host.external_name}[/]"
        )

    def watch_status(self, status: HostStatus) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        self.query_one(".header", Label).update(self._get_header())

    def on_mount(self) -> None:
        log = self.query_one(RichLog)
        for line in self._pending:
            log.write(line)
        self._pending.clear()

    def append_output(self, line: str) -> None:
        """Append a line of output to this panel."""
        if not self.is_mounted:
            self._pending.append(line)
            return
        self.query_one(RichLog).write(line)


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return f"Progress: {self.completed}/{self.total} hosts complete | {status} | Press 'q' to quit"


@dataclass
class HostOutput(Message):
    index: int
    host: HostIdentity
    line: str


@dataclass
class HostStatusChange(Message):
    index: int
    host: HostIdentity
    status: HostStatus


class Dashboard(App):
    """Runs a fleet operation in a worker thread and renders its output."""

    CSS = """
    #host-grid {
        grid-size: 2;
        grid-gutter: 1;
        height: 1fr;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(self, operation: Operation, **kwargs) -> None:
        super().__init__(**kwargs)
        self.operation = operation
        # Keyed by position in the host list; the same host may appear twice
        self.panels: dict[int, HostPanel] = {}
        self._chains_built = 0
        self.report: Optional[FleetOperationReport] = None
        self.error: Optional[BaseException] = None
        self._worker: Optional[Worker] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Grid(id="host-grid")
        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start the operation when the app mounts."""
        self._worker = self.run_worker(
            self._run_operation, exclusive=True, thread=True, exit_on_error=False
        )

    def _run_operation(self) -> None:
        self.report = self.operation(self._listener_factory, self._on_status)

    def _listener_factory(self, host: HostIdentity) -> ListenerChain:
        # Called from the worker thread, once per host in list order, so the
        # call count is the host's position. Lines go over to the UI thread.
        index = self._chains_built
        self._chains_built += 1
        return ListenerChain(
            [
                CallbackListener(
                    lambda h, line: self.post_message(HostOutput(index, h, line))
                )
            ]
        )

    def _on_status(self, index: int, host: HostIdentity, status: HostStatus) -> None:
        self.post_message(HostStatusChange(index, host, status))

    def _panel_for(self, index: int, host: HostIdentity) -> HostPanel:
        if index not in self.panels:
            panel = HostPanel(host, id=f"panel-{index}")
            self.panels[index] = panel
            self.query_one("#host-grid", Grid).mount(panel)
            self.query_one("#status-bar", StatusBar).total = len(self.panels)
        return self.panels[index]

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker is not self._worker:
            return
        if event.state == WorkerState.ERROR:
            self.error = event.worker.error
        if event.state in (WorkerState.SUCCESS, WorkerState.ERROR):
            self.query_one("#status-bar", StatusBar).running = False

    def on_host_output(self, message: HostOutput) -> None:
        self._panel_for(message.index, message.host).append_output(message.line)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        panel = self._panel_for(message.index, message.host)
        if message.status in FINISHED and panel.status not in FINISHED:
            self.query_one("#status-bar", StatusBar).completed += 1
        panel.status = message.status

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()
