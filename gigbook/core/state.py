"""Per-invocation state shared by gigbook commands."""

from __future__ import annotations

from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, ContextManager, Dict

from rich.console import Console


@dataclass
class CLIState:
    """Output mode, loaded configuration and the user commands act for."""

    json_output: bool
    plain_output: bool
    verbose: bool
    quiet: bool
    config_path: Path
    config: Dict[str, Any]
    console: Console
    user_id: str = "local"

    def spinner(self, message: str) -> ContextManager[Any]:
        # Plain output is meant for pipes, so no live status line there.
        if self.plain_output:
            return nullcontext()
        return self.console.status(message)
