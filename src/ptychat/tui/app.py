"""Main Textual application for the ptychat chat view."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from rich.markup import escape

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.timer import Timer
from textual.widgets import Footer, Header, Input, Label, Markdown, Static

from ptychat.chat.message import PLACEHOLDER, MessageSnapshot, Role
from ptychat.session.wire import EventType, WireEvent
from ptychat.stream.events import ToolBlock

if TYPE_CHECKING:
    from ptychat.chat.session import ChatSession
    from ptychat.pty.manager import PTYManager

logger = logging.getLogger(__name__)

_SPINNER = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

_TOOL_ICONS: dict[str, str] = {
    "shell": "$",
    "bash": "$",
    "run_shell_command": "$",
    "read_file": "→",
    "write_file": "←",
    "edit": "←",
    "search": "✱",
    "grep": "✱",
    "glob": "✱",
    "think": "◇",
    "task": "#",
}


class TUILogHandler(logging.Handler):
    """Logging handler that captures the last log message for the status bar.

    Writing to stderr would corrupt the Textual display, so the most
    recent record is kept here and the status bar is refreshed.
    """

    def __init__(self, app: PtychatApp) -> None:
        super().__init__()
        self._app = app
        self.last_message: str = ""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.last_message = self.format(record)
        except Exception:
            self.handleError(record)
            return
        try:
            self._app.call_from_thread(self._app._update_status)
        except RuntimeError:
            # Already on the app's thread
            self._app.call_later(self._app._update_status)


class PtychatApp(App):
    """ptychat TUI — chat with the program running in a PTY."""

    TITLE = "ptychat"
    CSS = """
    #main-layout {
        layout: horizontal;
        height: 1fr;
    }

    #chat-scroll {
        width: 3fr;
        border: solid $primary;
    }

    #sidebar {
        width: 1fr;
        min-width: 36;
        max-width: 60;
    }

    #session-info {
        height: auto;
        max-height: 8;
        border: solid $secondary;
        padding: 0 1;
    }

    #terminal-pane {
        height: 1fr;
        border: solid $secondary;
        overflow-y: auto;
        padding: 0 1;
    }

    #chat-input {
        dock: bottom;
        margin: 0 0 1 0;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: $surface;
        color: $text-muted;
        padding: 0 1;
    }

    .user-message {
        margin: 1 0 0 0;
        padding: 0 1;
        border-left: thick $accent;
    }

    .md-block {
        margin: 0 0 0 1;
    }

    .tool-line {
        margin: 0 0 0 2;
        height: auto;
        color: $text-muted;
    }

    .chat-status {
        margin: 1 0 0 1;
        color: $text-muted;
    }

    .terminal-output {
        color: $text-muted;
    }

    .terminal-exit-notice {
        color: $warning;
        margin: 0 0 1 0;
    }
    """

    BINDINGS = [
        Binding("ctrl+l", "clear_chat", "Clear"),
        Binding("ctrl+r", "restart", "Restart"),
        Binding("ctrl+q", "quit", "Quit"),
        Binding("ctrl+c", "quit", "Quit", show=False),
    ]

    def __init__(
        self,
        session: ChatSession,
        manager: PTYManager | None = None,
    ) -> None:
        super().__init__()
        self.session = session
        self.wire = session.wire
        self._manager = manager
        self._log_handler: TUILogHandler | None = None
        self._spinner_timer: Timer | None = None
        self._spinner_idx = 0
        self._waiting = False  # True while the open turn shows its placeholder
        self._terminal_refresh_timer: Timer | None = None
        # message id -> (content widget, tool line widget)
        self._widgets: dict[str, tuple[Static | Markdown, Static | None]] = {}
        self._widget_counter = 0

    def _next_id(self, prefix: str = "w") -> str:
        self._widget_counter += 1
        return f"{prefix}-{self._widget_counter}"

    def compose(self) -> ComposeResult:
        yield Header()
        with Horizontal(id="main-layout"):
            yield VerticalScroll(id="chat-scroll")
            with Vertical(id="sidebar"):
                yield Static(id="session-info")
                yield VerticalScroll(id="terminal-pane")
        yield Input(placeholder="Message (Enter to send)", id="chat-input")
        yield Static(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        tool = self.session.config.chat.tool
        self.sub_title = tool or self.session.config.terminal.shell

        self._install_log_handler()
        self._update_session_info()
        self._update_status()
        self._listen_wire()
        self._open_session()
        self._terminal_refresh_timer = self.set_interval(2.0, self._refresh_terminal)
        self.query_one("#chat-input", Input).focus()

    def on_unmount(self) -> None:
        self.session.close()
        if self._manager is not None:
            self._manager.cleanup()
        self.wire.close()

    def _install_log_handler(self) -> None:
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        self._log_handler = TUILogHandler(self)
        self._log_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        root.addHandler(self._log_handler)

    # --- Status bar ---

    def _update_status(self) -> None:
        try:
            status = self.query_one("#status-bar", Static)
        except Exception:
            return
        last_log = ""
        if self._log_handler and self._log_handler.last_message:
            last_log = self._log_handler.last_message
            if len(last_log) > 80:
                last_log = last_log[:77] + "..."
        parts = [
            f"cwd: {escape(self.session.cwd or '?')}",
            f"Messages: {len(self._widgets)}",
        ]
        if self._waiting:
            frame = _SPINNER[self._spinner_idx % len(_SPINNER)]
            parts.append(f"[bold]{frame} waiting[/bold]")
        if last_log:
            parts.append(f"[dim]{escape(last_log)}[/dim]")
        status.update(" | ".join(parts))

    def _update_session_info(self) -> None:
        info = self.query_one("#session-info", Static)
        config = self.session.config
        lines = [
            f"[bold]Shell:[/bold] {escape(config.terminal.shell)}",
            f"[bold]Tool:[/bold] {escape(config.chat.tool or '-')}",
            f"[bold]cwd:[/bold] {escape(self.session.cwd or '?')}",
        ]
        info.update("\n".join(lines))

    def _start_spinner(self) -> None:
        self._waiting = True
        self._spinner_idx = 0
        if self._spinner_timer is None:
            self._spinner_timer = self.set_interval(0.08, self._tick_spinner)
        self._update_status()

    def _stop_spinner(self) -> None:
        self._waiting = False
        if self._spinner_timer is not None:
            self._spinner_timer.stop()
            self._spinner_timer = None
        self._update_status()

    def _tick_spinner(self) -> None:
        self._spinner_idx += 1
        self._update_status()

    # --- Chat helpers ---

    def _chat_scroll(self) -> VerticalScroll:
        return self.query_one("#chat-scroll", VerticalScroll)

    def _append_static(self, content: str, classes: str = "") -> Static:
        """Append a Static widget to chat and scroll to bottom."""
        chat = self._chat_scroll()
        widget = Static(content, id=self._next_id(), classes=classes)
        chat.mount(widget)
        chat.scroll_end(animate=False)
        return widget

    # --- Session ---

    @work(exclusive=True, group="session")
    async def _open_session(self) -> None:
        if await self.session.open():
            self.wire.send_status(f"PTY {self.session.process.id} open")

    def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value
        event.input.value = ""
        try:
            self.session.submit_user_input(text)
        except (RuntimeError, OSError) as e:
            logger.warning("Input not sent: %s", e)
            self.wire.send_error(str(e))

    def action_clear_chat(self) -> None:
        self.session.clear()

    def action_restart(self) -> None:
        self._restart_session()

    @work(exclusive=True, group="session")
    async def _restart_session(self) -> None:
        if await self.session.restart():
            self.wire.send_status(f"PTY {self.session.process.id} restarted")

    # --- Wire event loop ---

    @work(exclusive=True, group="wire")
    async def _listen_wire(self) -> None:
        queue = self.wire.subscribe()
        try:
            while True:
                event = await queue.get()
                if event is None:
                    self._stop_spinner()
                    break
                self._handle_event(event)
        finally:
            self.wire.unsubscribe(queue)

    # --- Event dispatch ---

    def _handle_event(self, event: WireEvent) -> None:
        handlers = {
            EventType.MESSAGE_APPENDED: self._on_message_appended,
            EventType.MESSAGE_UPDATED: self._on_message_updated,
            EventType.MESSAGE_CLOSED: self._on_message_closed,
            EventType.MESSAGES_CLEARED: self._on_cleared,
            EventType.CWD_CHANGED: self._on_cwd_changed,
            EventType.ERROR: self._on_error,
            EventType.STATUS: self._on_status,
            EventType.PTY_EXIT: self._on_pty_exit,
        }
        handler = handlers.get(event.type)
        if handler:
            handler(event.data)

    def _on_message_appended(self, data: dict) -> None:
        snap: MessageSnapshot = data["message"]
        chat = self._chat_scroll()
        if snap.role is Role.USER:
            widget: Static | Markdown = Static(
                escape(snap.content), id=self._next_id("msg"), classes="user-message"
            )
        else:
            widget = Markdown(snap.content, id=self._next_id("msg"), classes="md-block")
        chat.mount(widget)
        self._widgets[snap.id] = (widget, None)
        self._render_tools(snap)
        chat.scroll_end(animate=False)

        if snap.is_streaming and snap.content == PLACEHOLDER:
            self._start_spinner()
        else:
            self._update_status()

    def _on_message_updated(self, data: dict) -> None:
        snap: MessageSnapshot = data["message"]
        entry = self._widgets.get(snap.id)
        if entry is None:
            self._on_message_appended(data)
            return
        widget, _ = entry
        if isinstance(widget, Markdown):
            widget.update(snap.content)
        else:
            widget.update(escape(snap.content))
        self._render_tools(snap)
        if self._waiting and snap.content != PLACEHOLDER:
            self._stop_spinner()
        self._chat_scroll().scroll_end(animate=False)

    def _on_message_closed(self, data: dict) -> None:
        self._on_message_updated(data)
        self._stop_spinner()

    def _render_tools(self, snap: MessageSnapshot) -> None:
        if not snap.blocks:
            return
        widget, tools = self._widgets[snap.id]
        text = "\n".join(_tool_line(block) for block in snap.blocks)
        if tools is None:
            tools = Static(text, id=self._next_id(), classes="tool-line")
            self._chat_scroll().mount(tools, after=widget)
            self._widgets[snap.id] = (widget, tools)
        else:
            tools.update(text)

    def _on_cleared(self, data: dict) -> None:
        self._chat_scroll().remove_children()
        self._widgets.clear()
        self._stop_spinner()

    def _on_cwd_changed(self, data: dict) -> None:
        self._update_session_info()
        self._update_status()

    def _on_error(self, data: dict) -> None:
        error = data.get("error", "Unknown error")
        self._stop_spinner()
        self._append_static(
            f"[bold red]{escape(error)}[/bold red]", classes="chat-status"
        )

    def _on_status(self, data: dict) -> None:
        message = data.get("message", "")
        if message:
            self._append_static(f"[dim]{escape(message)}[/dim]", classes="chat-status")
        self._update_status()

    def _on_pty_exit(self, data: dict) -> None:
        """Handle PTY_EXIT: the process behind a view exited on its own."""
        session_id = data.get("session_id", "?")
        title = data.get("title", "")
        exit_code = data.get("exit_code")
        last_output = data.get("last_output", "")

        label = title or session_id
        code_str = str(exit_code) if exit_code is not None else "?"

        self._stop_spinner()
        self._append_static(
            f"[bold yellow]PTY exited: {escape(label)} (code={code_str})[/bold yellow]"
            " [dim](ctrl+r to restart)[/dim]",
            classes="chat-status",
        )

        pane = self.query_one("#terminal-pane", VerticalScroll)
        pane.mount(
            Label(
                f"[{escape(label)}] exited (code={code_str})\n{escape(last_output)}",
                classes="terminal-exit-notice",
            )
        )
        pane.scroll_end()

    def _refresh_terminal(self) -> None:
        """Periodically mirror the tail of the chat PTY's output."""
        buffer = getattr(self.session.process, "buffer", None)
        if buffer is None or not self.session.process.alive:
            return

        pane = self.query_one("#terminal-pane", VerticalScroll)
        pane.remove_children()
        tail_lines = buffer.read_tail(30)
        if tail_lines:
            output_text = "\n".join(escape(line) for line in tail_lines)
            pane.mount(Static(f"[dim]{output_text}[/dim]", classes="terminal-output"))
        pane.scroll_end()


def _tool_line(block: ToolBlock) -> str:
    icon = _TOOL_ICONS.get(block.name, "→")
    summary = ""
    if isinstance(block.input, dict) and block.input:
        first_key = next(iter(block.input))
        value = str(block.input[first_key])
        if len(value) > 60:
            value = value[:57] + "..."
        summary = f" {value}"
    return f"{icon} {escape(block.name)}{escape(summary)}"
