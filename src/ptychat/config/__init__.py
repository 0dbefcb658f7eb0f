"""Configuration — Pydantic models for ptychat settings."""

from __future__ import annotations

import os
from typing import Any

from pydantic import BaseModel, Field


def _default_shell() -> str:
    return os.environ.get("SHELL") or "/bin/sh"


class TerminalConfig(BaseModel):
    """PTY settings shared by the chat and terminal views."""

    shell: str = Field(default_factory=_default_shell)
    cols: int = Field(default=120, gt=0)
    rows: int = Field(default=40, gt=0)
    term: str = Field(
        default="xterm-256color", description="TERM for the plain terminal view"
    )
    report_cwd: bool = Field(
        default=True,
        description="Install a PROMPT_COMMAND that reports the cwd via OSC-7",
    )
    env: dict[str, str] = Field(default_factory=dict)


class ChatConfig(BaseModel):
    """Chat view settings."""

    tool: str | None = Field(
        default=None, description="Tool id launched when the chat PTY opens"
    )
    tool_commands: dict[str, str] = Field(
        default_factory=lambda: {"google": "gemini", "claude": "claude"},
        description="Tool id -> command line. Unknown ids run the id itself.",
    )
    launch_delay: float = Field(
        default=0.5, ge=0, description="Seconds to wait before launching the tool"
    )
    term: str = Field(
        default="dumb", description="TERM for the chat PTY (fewer escape codes)"
    )
    noise_min_length: int = Field(
        default=5,
        ge=0,
        description="Raw lines shorter than this are noise while a tool is active",
    )
    suppress_echo: bool = Field(
        default=True, description="Drop the PTY's echo of submitted input"
    )
    keep_styling: bool = Field(
        default=False, description="Keep SGR styling codes in raw chat text"
    )

    def command_for(self, tool_id: str) -> str:
        return self.tool_commands.get(tool_id, tool_id)


class ScannerConfig(BaseModel):
    """Escape sequence scanner settings."""

    max_pending: int = Field(
        default=1024,
        ge=2,
        description="Longest escape sequence held before it is flushed as text",
    )


class PtychatConfig(BaseModel):
    """Top-level ptychat configuration."""

    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    scanner: ScannerConfig = Field(default_factory=ScannerConfig)

    @classmethod
    def load(cls, config_path: str | None = None) -> PtychatConfig:
        """Load config from file, env vars, or defaults.

        Priority: env vars > config file > defaults.

        Env vars:
            PTYCHAT_SHELL         - Shell (or agent CLI) run in the PTY
            PTYCHAT_TOOL          - Tool id to launch in the chat PTY
            PTYCHAT_COLS          - Terminal width
            PTYCHAT_ROWS          - Terminal height
            PTYCHAT_KEEP_STYLING  - Keep SGR styling in chat text (1/true/yes)
            PTYCHAT_MAX_PENDING   - Escape sequence expiry length
        """
        # Load .env file if present; .env wins over stale shell exports
        try:
            from dotenv import load_dotenv

            load_dotenv(override=True)
        except ImportError:
            pass

        config_data: dict[str, Any] = {}

        if config_path and os.path.exists(config_path):
            import json

            with open(config_path) as f:
                config_data = json.load(f)

        terminal = config_data.get("terminal", {})
        chat = config_data.get("chat", {})
        scanner = config_data.get("scanner", {})

        env_shell = os.environ.get("PTYCHAT_SHELL")
        if env_shell:
            terminal["shell"] = env_shell

        env_cols = os.environ.get("PTYCHAT_COLS")
        if env_cols:
            terminal["cols"] = int(env_cols)

        env_rows = os.environ.get("PTYCHAT_ROWS")
        if env_rows:
            terminal["rows"] = int(env_rows)

        env_tool = os.environ.get("PTYCHAT_TOOL")
        if env_tool:
            chat["tool"] = env_tool

        env_keep_styling = os.environ.get("PTYCHAT_KEEP_STYLING")
        if env_keep_styling:
            chat["keep_styling"] = env_keep_styling.lower() in ("1", "true", "yes")

        env_max_pending = os.environ.get("PTYCHAT_MAX_PENDING")
        if env_max_pending:
            scanner["max_pending"] = int(env_max_pending)

        if terminal:
            config_data["terminal"] = terminal
        if chat:
            config_data["chat"] = chat
        if scanner:
            config_data["scanner"] = scanner

        return cls.model_validate(config_data)
