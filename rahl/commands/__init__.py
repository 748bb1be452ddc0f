"""
Chat commands for rahl.

Public API:
    - CommandDispatcher: Registry and dispatcher of named commands
    - CommandDescriptor: A registered command record
    - CommandContext: Per-invocation context passed to handlers
    - DispatchResult: Outcome of a dispatch
    - Privilege: PUBLIC or ADMIN_ONLY
    - register_builtin_commands: Installs the built-in command set
    - evaluate / CalculationError: Restricted arithmetic evaluator
"""

from .builtin import format_duration, register_builtin_commands
from .calculator import CalculationError, evaluate, format_result
from .dispatcher import (
    GENERIC_ERROR_REPLY,
    CommandContext,
    CommandDescriptor,
    CommandDispatcher,
    DispatchResult,
    Privilege,
)

__all__ = [
    "GENERIC_ERROR_REPLY",
    "CalculationError",
    "CommandContext",
    "CommandDescriptor",
    "CommandDispatcher",
    "DispatchResult",
    "Privilege",
    "evaluate",
    "format_duration",
    "format_result",
    "register_builtin_commands",
]
