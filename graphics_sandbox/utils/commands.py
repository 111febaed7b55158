"""Command template rendering for external collaborators."""

import shlex
import shutil
from typing import List, Optional


def render_command(template: str, **values) -> List[str]:
    """Tokenize a command template and fill placeholders per token.

    Tokenizing before formatting keeps substituted values (paths, display
    names) as single argv entries no matter what characters they contain.

    Args:
        template: Shell-like command line, e.g. "xpra start :{display}"
        **values: Placeholder values

    Returns:
        argv list ready for asyncio.create_subprocess_exec
    """
    return [token.format(**values) for token in shlex.split(template)]


def command_binary(template: str) -> Optional[str]:
    """Return the executable named by a command template."""
    tokens = shlex.split(template)
    return tokens[0] if tokens else None


def is_command_available(template: str) -> bool:
    """Check whether a command template's executable is on PATH."""
    binary = command_binary(template)
    return binary is not None and shutil.which(binary) is not None
