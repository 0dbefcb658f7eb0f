"""CLI entry point for ptychat."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import signal
import sys
from typing import TYPE_CHECKING

import typer

from ptychat.config import PtychatConfig

if TYPE_CHECKING:
    from ptychat.chat.message import MessageSnapshot
    from ptychat.chat.session import ChatSession

app = typer.Typer(
    name="ptychat",
    help="Chat with a shell or agent CLI running in a pseudo-terminal.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

TERMINAL_BANNER = "ptychat terminal"


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config(
    config_file: str | None,
    shell: str | None = None,
    tool: str | None = None,
) -> PtychatConfig:
    config = PtychatConfig.load(config_file)
    if shell:
        config.terminal.shell = shell
    if tool:
        config.chat.tool = tool
    return config


def _resolve_cwd(cwd: str | None) -> str:
    path = os.path.abspath(cwd or os.getcwd())
    if not os.path.isdir(path):
        typer.echo(f"Error: Directory not found: {path}", err=True)
        raise typer.Exit(1)
    return path


@app.command()
def chat(
    tool: str | None = typer.Option(
        None,
        "--tool",
        "-t",
        help="Tool to launch in the PTY (e.g. 'claude', 'google').",
    ),
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell to run (default: $SHELL)."
    ),
    cwd: str | None = typer.Option(
        None, "--cwd", "-C", help="Starting directory."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Chat with a PTY-hosted program (plain CLI output).

    Lines typed on stdin are sent as user turns. /clear empties the
    conversation, /cd DIR changes directory, /quit exits.
    """
    setup_logging(verbose)
    config = _load_config(config_file, shell=shell, tool=tool)
    start_dir = _resolve_cwd(cwd)

    typer.echo(f"Shell: {config.terminal.shell}")
    if config.chat.tool:
        typer.echo(f"Tool: {config.chat.command_for(config.chat.tool)}")
    typer.echo("---")

    try:
        asyncio.run(_run_chat(config, start_dir))
    except KeyboardInterrupt:
        typer.echo("\nInterrupted.")


async def _run_chat(config: PtychatConfig, cwd: str) -> None:
    """Run a chat session, printing turns as they stream in."""
    from ptychat.chat.message import PLACEHOLDER, Role
    from ptychat.chat.session import ChatSession
    from ptychat.pty.manager import PTYManager
    from ptychat.session.wire import EventType, Wire

    wire = Wire()
    manager = PTYManager(wire)
    session = ChatSession.create(manager, config, wire=wire, cwd=cwd)

    # message id -> content and tool block count already printed
    printed: dict[str, str] = {}
    printed_blocks: dict[str, int] = {}

    def _print_message(snap: MessageSnapshot) -> None:
        if snap.role is Role.USER:
            return
        shown = printed.get(snap.id)
        content = snap.content
        if snap.is_streaming and content == PLACEHOLDER:
            return
        if shown is None:
            print(content, end="", flush=True)
        elif content.startswith(shown):
            print(content[len(shown):], end="", flush=True)
        elif content != shown:
            # Redrawn from the top
            print(f"\n{content}", end="", flush=True)
        printed[snap.id] = content
        for block in snap.blocks[printed_blocks.get(snap.id, 0):]:
            print(f"\n  > {block.name}", flush=True)
        printed_blocks[snap.id] = len(snap.blocks)

    async def _consume_wire() -> None:
        queue = wire.subscribe()
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                d = event.data

                if event.type in (
                    EventType.MESSAGE_APPENDED,
                    EventType.MESSAGE_UPDATED,
                ):
                    _print_message(d["message"])

                elif event.type == EventType.MESSAGE_CLOSED:
                    _print_message(d["message"])
                    if d["message"].role is not Role.USER:
                        print(flush=True)

                elif event.type == EventType.MESSAGES_CLEARED:
                    printed.clear()
                    printed_blocks.clear()
                    print("\n[cleared]", flush=True)

                elif event.type == EventType.CWD_CHANGED:
                    logger.debug("cwd: %s", d.get("cwd"))

                elif event.type == EventType.ERROR:
                    error = d.get("error", "Unknown error")
                    print(f"\n{error}", file=sys.stderr, flush=True)

                elif event.type == EventType.PTY_EXIT:
                    code = d.get("exit_code")
                    print(f"\n[PTY exited: code={code}]", flush=True)
                    break
        finally:
            wire.unsubscribe(queue)

    consumer = asyncio.create_task(_consume_wire())
    try:
        if not await session.open():
            return
        await _read_input(session, consumer)
    finally:
        session.close()
        manager.cleanup()
        wire.close()
        await consumer


async def _read_input(session: ChatSession, consumer: asyncio.Task) -> None:
    """Send stdin lines to the session until EOF, /quit, or PTY exit."""
    from ptychat.stream.lines import LineReassembler

    loop = asyncio.get_running_loop()
    fd = sys.stdin.fileno()
    lines: asyncio.Queue[str | None] = asyncio.Queue()
    reassembler = LineReassembler()

    def _on_stdin() -> None:
        data = os.read(fd, 4096)
        if not data:
            lines.put_nowait(None)  # EOF
            return
        for line in reassembler.feed(data.decode(errors="replace")):
            lines.put_nowait(line)

    loop.add_reader(fd, _on_stdin)
    try:
        while not consumer.done():
            getter = asyncio.ensure_future(lines.get())
            done, _ = await asyncio.wait(
                {getter, consumer}, return_when=asyncio.FIRST_COMPLETED
            )
            if getter not in done:
                getter.cancel()
                return
            text = getter.result()
            if text is None or text == "/quit":
                return
            try:
                if text == "/clear":
                    session.clear()
                elif text.startswith("/cd "):
                    session.change_directory(text[4:].strip())
                else:
                    session.submit_user_input(text)
            except (RuntimeError, OSError) as e:
                logger.warning("Input not sent: %s", e)
                typer.echo(f"Error: {e}", err=True)
    finally:
        loop.remove_reader(fd)


@app.command()
def tui(
    tool: str | None = typer.Option(
        None,
        "--tool",
        "-t",
        help="Tool to launch in the PTY (e.g. 'claude', 'google').",
    ),
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell to run (default: $SHELL)."
    ),
    cwd: str | None = typer.Option(
        None, "--cwd", "-C", help="Starting directory."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Chat with a PTY-hosted program in the interactive TUI."""
    setup_logging(verbose)
    config = _load_config(config_file, shell=shell, tool=tool)
    start_dir = _resolve_cwd(cwd)

    from ptychat.chat.session import ChatSession
    from ptychat.pty.manager import PTYManager
    from ptychat.session.wire import Wire
    from ptychat.tui.app import PtychatApp

    wire = Wire()
    manager = PTYManager(wire)
    session = ChatSession.create(manager, config, wire=wire, cwd=start_dir)

    tui_app = PtychatApp(session=session, manager=manager)
    tui_app.run()


@app.command()
def term(
    shell: str | None = typer.Option(
        None, "--shell", "-s", help="Shell to run (default: $SHELL)."
    ),
    cwd: str | None = typer.Option(
        None, "--cwd", "-C", help="Starting directory."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run a shell in a PTY with this terminal as the renderer."""
    setup_logging(verbose)
    config = _load_config(config_file, shell=shell)
    start_dir = _resolve_cwd(cwd)

    if not sys.stdin.isatty():
        typer.echo("Error: term needs an interactive terminal", err=True)
        raise typer.Exit(1)

    final_cwd = asyncio.run(_run_terminal(config, start_dir))
    if final_cwd:
        typer.echo(f"Last directory: {final_cwd}")


async def _run_terminal(config: PtychatConfig, cwd: str) -> str:
    """Pump the PTY to stdout and stdin to the PTY until the shell exits.

    Returns the last directory the shell reported.
    """
    import termios
    import tty

    from ptychat.pty.manager import PTYManager
    from ptychat.pty.session import PTYOpenError
    from ptychat.session.directory import DirectoryTracker
    from ptychat.stream.terminal import TerminalFeed

    out = sys.stdout

    def _render(text: str) -> None:
        out.write(text)
        out.flush()

    tracker = DirectoryTracker(initial=cwd)
    feed = TerminalFeed(
        _render, tracker=tracker, max_pending=config.scanner.max_pending
    )

    terminal = config.terminal
    manager = PTYManager()
    session = manager.create(
        [terminal.shell],
        cwd=cwd,
        env=terminal.env,
        title="terminal",
        term=terminal.term,
        report_cwd=terminal.report_cwd,
    )
    session.subscribe(feed.feed)

    size = shutil.get_terminal_size((terminal.cols, terminal.rows))
    _render(f"{TERMINAL_BANNER}\r\n")
    try:
        await session.open(size.columns, size.lines)
    except PTYOpenError as e:
        typer.echo(f"Error: Failed to open terminal session. {e}", err=True)
        raise typer.Exit(1) from e

    loop = asyncio.get_running_loop()
    fd = sys.stdin.fileno()
    saved = termios.tcgetattr(fd)

    def _on_stdin() -> None:
        data = os.read(fd, 1024)
        if data and session.alive:
            session.write(data)

    def _on_winch() -> None:
        new = shutil.get_terminal_size((terminal.cols, terminal.rows))
        session.resize(new.columns, new.lines)

    tty.setraw(fd)
    loop.add_reader(fd, _on_stdin)
    loop.add_signal_handler(signal.SIGWINCH, _on_winch)
    try:
        while session.alive:
            await asyncio.sleep(0.1)
    finally:
        loop.remove_signal_handler(signal.SIGWINCH)
        loop.remove_reader(fd)
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        manager.cleanup()
    return tracker.cwd


def main() -> None:
    app()


if __name__ == "__main__":
    main()
