from __future__ import annotations

import json
import re
from typing import Any, List, Optional

from .models import Candidate

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_QUESTION_RE = re.compile(r'"question"\s*:\s*"([^"]+)"')
_OBJECT_SPLIT_RE = re.compile(r"[、，,\n]")


def _json_span(text: str) -> Optional[str]:
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return None
    return text[first : last + 1]


def _question_from_json(text: str) -> Optional[str]:
    span = _json_span(text)
    if span is None:
        return None
    try:
        obj = json.loads(span)
    except json.JSONDecodeError:
        return None
    if not isinstance(obj, dict):
        return None
    question = obj.get("question")
    if isinstance(question, str) and question.strip():
        return question.strip()
    return None


def normalize_assistant_text(raw: Any) -> str:
    """Strip code fences / JSON wrappers so only prose reaches the transcript."""

    text = ("" if raw is None else str(raw)).strip()
    fence = _FENCE_RE.search(text)
    inside = fence.group(1).strip() if fence else text

    parsed = _question_from_json(inside) or _question_from_json(text)
    if parsed:
        return parsed.replace("```", "").strip()

    match = _QUESTION_RE.search(inside)
    if match and match.group(1).strip():
        return match.group(1).replace("```", "").strip()

    return inside.replace("```", "").strip()


def _deidentify_label(label: str) -> str:
    label = label.replace("人物", "人影")
    return "人影" if label == "人" else label


def parse_candidates(text: Any) -> Optional[List[Candidate]]:
    """Extract ``{"candidates": [...]}`` from model output; ``None`` means no candidates."""

    if not isinstance(text, str):
        return None
    span = _json_span(text)
    if span is None:
        return None
    try:
        payload = json.loads(span)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    raw_candidates = payload.get("candidates")
    if not isinstance(raw_candidates, list):
        return None

    out: List[Candidate] = []
    for item in raw_candidates:
        if not isinstance(item, dict):
            continue

        def _field(name: str) -> str:
            value = item.get(name)
            return "" if value is None else str(value).strip()

        candidate = Candidate(
            label=_deidentify_label(_field("label")),
            element=_field("element"),
            location=_field("location"),
            evidence=_field("evidence"),
        )
        if candidate.label and candidate.element and candidate.location and candidate.evidence:
            out.append(candidate)
    return out or None


def normalize_objects_for_prompt(raw: str) -> str:
    """Soften person references so the object list never asks for identification."""

    text = (raw or "").strip()
    if not text:
        return text
    text = text.replace("人物", "人")
    return re.sub(r"(この)?人は誰(ですか)?", "人はどんな見え方ですか", text)


def split_objects(raw: str) -> List[str]:
    return [part.strip() for part in _OBJECT_SPLIT_RE.split(raw or "") if part.strip()]


__all__ = [
    "normalize_assistant_text",
    "normalize_objects_for_prompt",
    "parse_candidates",
    "split_objects",
]
