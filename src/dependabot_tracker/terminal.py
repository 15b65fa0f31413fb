"""Terminal device: rich output in the alternate screen, raw keyboard input."""

from __future__ import annotations

import asyncio
import signal
import sys
from contextlib import ExitStack
from typing import Callable

from prompt_toolkit.input import Input, create_input
from prompt_toolkit.keys import Keys
from rich.console import Console, RenderableType
from rich.live import Live

from dependabot_tracker.renderer import TerminalError

# How long a lone Esc waits for the rest of an escape sequence
ESCAPE_TIMEOUT = 0.05


def key_name(key: Keys | str) -> str:
    """Normalise a prompt_toolkit key to a plain string such as ``"up"``."""
    return key.value if isinstance(key, Keys) else key


class Terminal:
    """Raw-mode terminal session.

    ``init()`` must run inside the event loop: keyboard input and resize
    signals are delivered as loop callbacks. ``shutdown()`` restores the
    terminal and is safe to call more than once.
    """

    def __init__(
        self,
        console: Console | None = None,
        key_input: Input | None = None,
        escape_timeout: float = ESCAPE_TIMEOUT,
    ) -> None:
        self.console = console or Console()
        self.escape_timeout = escape_timeout
        self._stack: ExitStack | None = None
        self._input: Input | None = key_input
        self._live: Live | None = None
        self._flush_handle: asyncio.TimerHandle | None = None

    def init(self, on_key: Callable[[str], None], on_resize: Callable[[], None]) -> None:
        """Enter raw mode and the alternate screen.

        Raises:
            TerminalError: If stdin/stdout is not a terminal.
        """
        if not sys.stdin.isatty() or not self.console.is_terminal:
            raise TerminalError("Dashboard requires an interactive terminal")

        stack = ExitStack()
        try:
            if self._input is None:
                self._input = create_input()
            stack.enter_context(self._input.raw_mode())
            stack.enter_context(self._input.attach(lambda: self._read_keys(on_key)))

            self._live = Live(
                console=self.console, screen=True, auto_refresh=False, transient=True
            )
            self._live.start()
            stack.callback(self._live.stop)

            if hasattr(signal, "SIGWINCH"):
                loop = asyncio.get_running_loop()
                loop.add_signal_handler(signal.SIGWINCH, on_resize)
                stack.callback(loop.remove_signal_handler, signal.SIGWINCH)
        except BaseException:
            stack.close()
            raise
        self._stack = stack

    def _read_keys(self, on_key: Callable[[str], None]) -> None:
        assert self._input is not None
        for key_press in self._input.read_keys():
            on_key(key_name(key_press.key))

        # The parser holds a trailing Esc until it knows no sequence follows
        self._cancel_flush()
        self._flush_handle = asyncio.get_running_loop().call_later(
            self.escape_timeout, self._flush_keys, on_key
        )

    def _flush_keys(self, on_key: Callable[[str], None]) -> None:
        self._flush_handle = None
        if self._input is None:
            return
        for key_press in self._input.flush_keys():
            on_key(key_name(key_press.key))

    def _cancel_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def size(self) -> tuple[int, int]:
        width, height = self.console.size
        return width, height

    def draw(self, renderable: RenderableType) -> None:
        if self._live is None:
            raise TerminalError("Terminal is not initialised")
        self._live.update(renderable, refresh=True)

    def shutdown(self) -> None:
        self._cancel_flush()
        if self._stack is not None:
            self._stack.close()
            self._stack = None
        self._live = None
        self._input = None
