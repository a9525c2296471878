from __future__ import annotations

from typing import Any, Dict, Iterable, List, Sequence, Tuple

from .models import Message


class DialogLedger:
    """Ordered message history per dialogue key (object label or candidate label).

    A key never maps to an empty sequence: creation always seeds the kickoff
    turns, and ``set`` refuses an empty list.
    """

    def __init__(self, dialogs: Dict[str, Sequence[Message]] | None = None) -> None:
        self._dialogs: Dict[str, List[Message]] = {}
        for key, messages in (dialogs or {}).items():
            self.set(key, messages)

    def __contains__(self, key: object) -> bool:
        return key in self._dialogs

    def __len__(self) -> int:
        return len(self._dialogs)

    def keys(self) -> List[str]:
        return list(self._dialogs.keys())

    def has(self, key: str) -> bool:
        return key in self._dialogs

    def get(self, key: str) -> List[Message]:
        return list(self._dialogs.get(key, []))

    def set(self, key: str, messages: Sequence[Message]) -> None:
        seq = list(messages)
        if not seq:
            raise ValueError(f"Ledger entry for {key!r} cannot be empty")
        self._dialogs[key] = seq

    def open(self, key: str, kickoff: Sequence[Message]) -> Tuple[List[Message], bool]:
        """Return ``(messages, created)``; seeds ``kickoff`` only when ``key`` is new."""

        if key in self._dialogs:
            return self.get(key), False
        self.set(key, kickoff)
        return self.get(key), True

    def append(self, key: str, *messages: Message) -> List[Message]:
        if key not in self._dialogs:
            raise KeyError(key)
        self._dialogs[key].extend(messages)
        return self.get(key)

    def replace_last(self, key: str, message: Message) -> List[Message]:
        """Replace a trailing assistant turn; append when the tail is not an assistant turn."""

        seq = self._dialogs.get(key)
        if seq is None:
            raise KeyError(key)
        if seq and seq[-1].role == "assistant":
            seq[-1] = message
        else:
            seq.append(message)
        return self.get(key)

    def discard(self, key: str) -> None:
        self._dialogs.pop(key, None)

    def clear(self) -> None:
        self._dialogs.clear()

    def all_messages(self) -> List[Message]:
        out: List[Message] = []
        for seq in self._dialogs.values():
            out.extend(seq)
        return out

    def items(self) -> Iterable[Tuple[str, List[Message]]]:
        return [(key, list(seq)) for key, seq in self._dialogs.items()]

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {key: [m.to_dict() for m in seq] for key, seq in self._dialogs.items()}

    @classmethod
    def from_dict(cls, data: Any) -> "DialogLedger":
        ledger = cls()
        if not isinstance(data, dict):
            return ledger
        for key, raw in data.items():
            if not isinstance(raw, list):
                continue
            messages = [m for m in (Message.from_dict(item) for item in raw) if m is not None]
            if messages:
                ledger.set(str(key), messages)
        return ledger

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DialogLedger):
            return NotImplemented
        return self._dialogs == other._dialogs

    def __repr__(self) -> str:
        return f"DialogLedger(keys={self.keys()!r})"


def visible_messages(messages: Iterable[Message]) -> List[Message]:
    """Messages that may be rendered in a user-facing transcript."""

    return [m for m in messages if not m.hidden and m.role != "system"]


__all__ = ["DialogLedger", "visible_messages"]
