from __future__ import annotations

from typing import Any, Callable, Iterable, List, Tuple

from .ledger import visible_messages
from .models import Message


def safe_component(
    factory: Callable[..., Any],
    *args: Any,
    optional_keys: Tuple[str, ...] = ("type", "show_copy_button", "live"),
    **kwargs: Any,
) -> Any:
    """Instantiate a Gradio component, dropping kwargs the installed version rejects."""

    attempt_kwargs = dict(kwargs)
    while True:
        try:
            return factory(*args, **attempt_kwargs)
        except TypeError as exc:
            message = str(exc)
            dropped = next(
                (key for key in optional_keys if key in attempt_kwargs and f"'{key}'" in message),
                None,
            )
            if dropped is None:
                raise
            attempt_kwargs.pop(dropped)


def chat_rows(messages: Iterable[Message]) -> List[dict]:
    """Chatbot ``messages``-format rows; hidden and system turns never render."""

    return [{"role": m.role, "content": m.content} for m in visible_messages(messages)]


__all__ = ["chat_rows", "safe_component"]
