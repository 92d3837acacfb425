"""Safe error message formatting utilities.

Ensures exceptions always have useful display messages, even when
their str() representation is empty (e.g., TimeoutError, CancelledError).
"""

from __future__ import annotations

import asyncio

from rich.markup import escape as _escape_markup

from livemodules.errors import ExecutionError

# Friendly messages for specific exception types known to have empty str()
FRIENDLY_MESSAGES: dict[type, str] = {
    TimeoutError: "Timed out waiting for the module to load.",
    asyncio.CancelledError: "Operation was cancelled.",
    FileNotFoundError: "File not found.",
    KeyboardInterrupt: "Operation interrupted by user.",
}


def format_error_message(e: BaseException, *, include_type: bool = True) -> str:
    """Format an exception into a useful display message.

    Args:
        e: The exception to format
        include_type: Whether to include the exception type name

    Returns:
        A non-empty, user-friendly error message

    Examples:
        >>> format_error_message(TimeoutError())
        'TimeoutError: Timed out waiting for the module to load.'

        >>> format_error_message(ValueError("invalid input"), include_type=False)
        'invalid input'
    """
    error_str = str(e)
    error_type = type(e).__name__

    if error_str:
        if include_type and error_type not in error_str:
            return f"{error_type}: {error_str}"
        return error_str

    for exc_type, friendly_msg in FRIENDLY_MESSAGES.items():
        if isinstance(e, exc_type):
            return f"{error_type}: {friendly_msg}"

    return f"{error_type}: (no additional details)"


def format_cause_chain(e: BaseException) -> list[str]:
    """Messages for ``e`` and each exception it was raised from.

    Execution errors already name their cause, so the chain stops there.
    """
    messages = [format_error_message(e)]
    cause = e.__cause__
    while cause is not None and not isinstance(e, ExecutionError):
        messages.append(format_error_message(cause))
        e, cause = cause, cause.__cause__
    return messages


def escape_markup(value: object) -> str:
    """Escape a value for safe interpolation into Rich markup strings.

    Args:
        value: Any value to escape (will be converted to str)

    Returns:
        String safe for interpolation into Rich markup f-strings
    """
    return _escape_markup(str(value))
