"""CLI commands"""

from .check import check_command
from .compile import compile_command
from .evaluate import eval_command

__all__ = ["check_command", "compile_command", "eval_command"]
