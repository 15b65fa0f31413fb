"""Terminal dashboard event loop."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Protocol

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from dependabot_tracker.models import AlertState, RepositorySnapshot
from dependabot_tracker.state import AlertStateStore

QUIT_KEYS = frozenset({"q", "Q", "escape", "c-c"})
SCROLL_KEYS = {
    "up": -1,
    "k": -1,
    "down": 1,
    "j": 1,
}
# Lines around the repository rows: header panel 3, titled overview table 6,
# repository table borders and header 4, caption 1, footer 1
CHROME_ROWS = 15
KEY_HINT = "(↑/↓ j/k) scroll · (PgUp/PgDn) page · (Home/End t) jump · (q/Esc) quit"


class TerminalError(Exception):
    """Unrecoverable terminal I/O failure."""

    pass


class TerminalDevice(Protocol):
    """What the renderer needs from the terminal."""

    def init(self, on_key: Callable[[str], None], on_resize: Callable[[], None]) -> None: ...

    def shutdown(self) -> None: ...

    def size(self) -> tuple[int, int]: ...

    def draw(self, renderable: RenderableType) -> None: ...


class EventKind(str, Enum):
    """Sources merged into the renderer's event stream."""

    TICK = "tick"
    KEY = "key"
    RESIZE = "resize"
    QUIT = "quit"


@dataclass(frozen=True)
class Event:
    seq: int
    kind: EventKind
    key: str | None = None


class EventStream:
    """Single ordered stream of tick, key and resize events.

    A quit key also raises ``quit_requested`` immediately, so the loop can
    exit without working through events queued ahead of it.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._seq = itertools.count()
        self.quit_requested = False

    def push(self, kind: EventKind, key: str | None = None) -> Event:
        event = Event(next(self._seq), kind, key)
        if kind is EventKind.QUIT:
            self.quit_requested = True
        self._queue.put_nowait(event)
        return event

    def push_key(self, key: str) -> Event:
        if key in QUIT_KEYS:
            return self.push(EventKind.QUIT, key)
        return self.push(EventKind.KEY, key)

    def push_resize(self) -> Event:
        return self.push(EventKind.RESIZE)

    async def next(self) -> Event:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


@dataclass
class UIState:
    """Renderer-local view state."""

    scroll_offset: int = 0
    last_version: int = -1
    width: int = 80
    height: int = 24

    @property
    def visible_rows(self) -> int:
        return max(1, self.height - CHROME_ROWS)


class RendererPhase(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    EXITING = "exiting"


@dataclass
class Renderer:
    """Merges events and redraws the dashboard when something changed.

    The AlertState is sampled from the store on every tick; the renderer
    never waits on the poller.
    """

    store: AlertStateStore
    terminal: TerminalDevice
    account: str = ""
    tick_seconds: float = 0.25
    events: EventStream = field(default_factory=EventStream)
    ui: UIState = field(default_factory=UIState)
    phase: RendererPhase = RendererPhase.STARTING
    draw_count: int = 0

    def __post_init__(self) -> None:
        self._state: AlertState = self.store.latest()
        self._ticker: asyncio.Task[None] | None = None

    @property
    def state(self) -> AlertState:
        """Last AlertState observed by the renderer."""
        return self._state

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            self.events.push(EventKind.TICK)

    def _max_offset(self) -> int:
        return max(0, len(self._state.snapshots) - self.ui.visible_rows)

    def _scroll_to(self, offset: int) -> bool:
        offset = min(max(0, offset), self._max_offset())
        if offset == self.ui.scroll_offset:
            return False
        self.ui.scroll_offset = offset
        return True

    def _on_key(self, key: str) -> bool:
        if key in SCROLL_KEYS:
            return self._scroll_to(self.ui.scroll_offset + SCROLL_KEYS[key])
        if key == "pageup":
            return self._scroll_to(self.ui.scroll_offset - self.ui.visible_rows)
        if key == "pagedown":
            return self._scroll_to(self.ui.scroll_offset + self.ui.visible_rows)
        if key in ("home", "t"):
            return self._scroll_to(0)
        if key in ("end", "G"):
            return self._scroll_to(self._max_offset())
        return False

    def _on_size(self) -> bool:
        width, height = self.terminal.size()
        if (width, height) == (self.ui.width, self.ui.height):
            return False
        self.ui.width, self.ui.height = width, height
        self._scroll_to(self.ui.scroll_offset)
        return True

    def handle(self, event: Event) -> bool:
        """Apply an event to the UI state.

        Returns:
            True if the dashboard needs redrawing.
        """
        if event.kind is EventKind.QUIT:
            self.phase = RendererPhase.EXITING
            return False
        if event.kind is EventKind.KEY:
            return self._on_key(event.key or "")
        if event.kind is EventKind.RESIZE:
            self._on_size()
            return True

        latest = self.store.latest()
        changed = latest.version > self._state.version or self.ui.last_version < 0
        if changed:
            self._state = latest
            self._scroll_to(self.ui.scroll_offset)
        return self._on_size() or changed

    def draw(self) -> None:
        try:
            self.terminal.draw(render_dashboard(self._state, self.ui, self.account))
        except OSError as e:
            raise TerminalError(f"Terminal write failed: {e}") from e
        self.ui.last_version = self._state.version
        self.draw_count += 1

    async def run(self) -> None:
        """Run until quit.

        Raises:
            TerminalError: If the terminal cannot be set up or written to.
        """
        try:
            self.terminal.init(self.events.push_key, self.events.push_resize)
        except TerminalError:
            self.phase = RendererPhase.EXITING
            raise
        except OSError as e:
            self.phase = RendererPhase.EXITING
            raise TerminalError(f"Cannot initialise terminal: {e}") from e

        try:
            self.ui.width, self.ui.height = self.terminal.size()
            self._state = self.store.latest()
            self.draw()
            self._ticker = asyncio.create_task(self._tick())
            self.phase = RendererPhase.RUNNING

            while self.phase is RendererPhase.RUNNING:
                event = await self.events.next()
                if self.events.quit_requested:
                    self.phase = RendererPhase.EXITING
                    break
                if self.handle(event):
                    self.draw()
        finally:
            self.phase = RendererPhase.EXITING
            if self._ticker is not None:
                self._ticker.cancel()
                await asyncio.gather(self._ticker, return_exceptions=True)
            self.terminal.shutdown()


def _status_text(snapshot: RepositorySnapshot) -> Text:
    if snapshot.last_error is not None:
        return Text(f"stale: {snapshot.last_error.value}", style="red")
    if snapshot.is_pending:
        return Text("pending", style="dim")
    return Text("ok", style="green")


def _format_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "never"


def render_dashboard(
    state: AlertState, ui: UIState, account: str = ""
) -> RenderableType:
    """Build the dashboard frame from the state and view settings alone."""
    title = "Dependabot Tracker"
    if account:
        title = f"{title} · {account}"
    header = Panel(
        Text(
            f"Last updated: {_format_time(state.updated_at)}   version {state.version}",
            no_wrap=True,
            overflow="ellipsis",
        ),
        title=title,
        border_style="green",
    )

    severities = state.severity_totals
    overview = Table(title=f"Alert Levels for {len(state.snapshots)} Repositories")
    overview.add_column("Open", justify="right", no_wrap=True)
    overview.add_column("Stale", justify="right", no_wrap=True)
    overview.add_column("Critical", justify="right", style="red", no_wrap=True)
    overview.add_column("High", justify="right", style="orange1", no_wrap=True)
    overview.add_column("Medium", justify="right", style="green", no_wrap=True)
    overview.add_column("Low", justify="right", style="blue", no_wrap=True)
    overview.add_column("Failing", justify="right", no_wrap=True)
    overview.add_row(
        str(state.total_open),
        str(state.stale_open),
        str(severities.critical),
        str(severities.high),
        str(severities.medium),
        str(severities.low),
        f"[red]{state.error_count}[/red]" if state.error_count else "0",
    )

    repos = Table(expand=True)
    repos.add_column("Repository", style="cyan", no_wrap=True)
    repos.add_column("Open", justify="right", no_wrap=True)
    repos.add_column("C", justify="right", style="red", no_wrap=True)
    repos.add_column("H", justify="right", style="orange1", no_wrap=True)
    repos.add_column("M", justify="right", style="green", no_wrap=True)
    repos.add_column("L", justify="right", style="blue", no_wrap=True)
    repos.add_column("Status", no_wrap=True)
    repos.add_column("Last success", no_wrap=True)

    start = ui.scroll_offset
    visible = state.snapshots[start : start + ui.visible_rows]
    for snapshot in visible:
        counts = snapshot.severities
        repos.add_row(
            snapshot.target.full_name,
            str(snapshot.open_count),
            str(counts.critical),
            str(counts.high),
            str(counts.medium),
            str(counts.low),
            _status_text(snapshot),
            _format_time(snapshot.last_success_at),
        )
    if not state.snapshots:
        repos.caption = "No repositories configured"
    elif len(state.snapshots) > len(visible):
        repos.caption = (
            f"{start + 1}-{start + len(visible)} of {len(state.snapshots)}"
        )

    footer = Text(KEY_HINT, style="red", no_wrap=True, overflow="ellipsis")
    return Group(header, overview, repos, footer)
