"""Plain data shapes shared by the orchestrator, the prompt builders and the store.

Every type round-trips through ``to_dict``/``from_dict`` so a whole viewing
session can be written to JSON and read back without losing structure.
``from_dict`` is tolerant: missing or mistyped fields fall back to defaults
instead of raising, because persisted records may come from older builds.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional

ROLES = ("system", "user", "assistant")


class Phase(IntEnum):
    OBSERVE = 1
    DEEPEN = 2
    EXPLORE = 3
    INTERPRET = 4


@dataclass(frozen=True)
class Message:
    """One chat turn.

    ``hidden`` turns steer the model and are never rendered to the user.  The
    flag is a local annotation only; the transport strips it before sending.
    """

    role: str
    content: str
    hidden: bool = False

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")

    def to_wire(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.hidden:
            data["hidden"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["Message"]:
        if not isinstance(data, dict):
            return None
        role = data.get("role")
        if role not in ROLES:
            return None
        content = data.get("content")
        return cls(role=role, content="" if content is None else str(content), hidden=bool(data.get("hidden", False)))


@dataclass
class ObjectCard:
    label: str
    completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "completed": self.completed}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectCard":
        return cls(label=str(data.get("label") or ""), completed=bool(data.get("completed", False)))


@dataclass(frozen=True)
class Candidate:
    """A model-proposed viewpoint: a concrete element the user has not mentioned yet."""

    label: str
    element: str
    location: str
    evidence: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "element": self.element,
            "location": self.location,
            "evidence": self.evidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Candidate":
        return cls(
            label=str(data.get("label") or ""),
            element=str(data.get("element") or ""),
            location=str(data.get("location") or ""),
            evidence=str(data.get("evidence") or ""),
        )


@dataclass(frozen=True)
class SavedView(Candidate):
    """A candidate the user chose to keep, with the summary of its dialogue."""

    saved_at: float = 0.0
    summary: Optional[str] = None

    @classmethod
    def from_candidate(cls, candidate: Candidate, *, saved_at: float, summary: Optional[str]) -> "SavedView":
        return cls(
            label=candidate.label,
            element=candidate.element,
            location=candidate.location,
            evidence=candidate.evidence,
            saved_at=saved_at,
            summary=summary,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["saved_at"] = self.saved_at
        if self.summary is not None:
            data["summary"] = self.summary
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedView":
        base = Candidate.from_dict(data)
        try:
            saved_at = float(data.get("saved_at") or 0.0)
        except (TypeError, ValueError):
            saved_at = 0.0
        summary = data.get("summary")
        return cls.from_candidate(base, saved_at=saved_at, summary=None if summary is None else str(summary))


_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?:;[^,]*)?;base64,(?P<payload>.*)$", re.DOTALL)


@dataclass
class ImageFile:
    """In-memory stand-in for an uploaded file: name, MIME type and raw bytes."""

    name: str
    mime: str = "image/jpeg"
    data: bytes = field(default=b"", repr=False)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_url(self) -> str:
        return f"data:{self.mime or 'image/jpeg'};base64,{self.to_base64()}"

    @classmethod
    def from_data_url(cls, data_url: str, name: str = "restored.jpg") -> Optional["ImageFile"]:
        if not isinstance(data_url, str):
            return None
        match = _DATA_URL_RE.match(data_url.strip())
        if not match:
            return None
        try:
            raw = base64.b64decode(match.group("payload"), validate=True)
        except (binascii.Error, ValueError):
            return None
        if not raw:
            return None
        return cls(name=name, mime=match.group("mime") or "image/jpeg", data=raw)


__all__ = [
    "Candidate",
    "ImageFile",
    "Message",
    "ObjectCard",
    "Phase",
    "ROLES",
    "SavedView",
]
