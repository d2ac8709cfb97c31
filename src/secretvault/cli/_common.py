"""Shared utilities for all CLI command modules.

Provides the Rich console instance and the helpers every command uses
to resolve the project and its key.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from ..keystore import InvalidKeyError, KeyNotFoundError, load_project_key
from ..models import ProjectContext
from ..project import load_project_context

console = Console()

CLI_NAME = "secretvault"


def current_project() -> ProjectContext:
    """Context for the project rooted at the working directory."""
    return load_project_context()


def require_key(ctx: ProjectContext) -> bytes:
    """Load the project key or exit with a hint to create one."""
    try:
        return load_project_key(ctx)
    except KeyNotFoundError:
        console.print(f"[red]Missing key for this project.[/] Run: [cyan]{CLI_NAME} key set[/]")
        raise SystemExit(1)
    except InvalidKeyError as exc:
        console.print(f"[red]{exc}[/]")
        raise SystemExit(1)


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    console.print(f"[red]{escape(message)}[/]")
    raise SystemExit(1)
