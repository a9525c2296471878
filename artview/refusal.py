"""Heuristic refusal detection and the single bounded retry.

Callers only learn "refusal or not" and never depend on which pattern
matched.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .model_engine import TransportError
from .models import ImageFile, Message

log = logging.getLogger(__name__)

SendFn = Callable[[Sequence[Message], Optional[ImageFile]], str]

_APOLOGY = re.compile(r"申し訳|すみません|恐れ入り|sorry|apolog", re.IGNORECASE)
_IMAGE_REF = re.compile(r"画像|写真|絵|作品|image|picture|photo|painting", re.IGNORECASE)
_CANNOT_DETAIL = re.compile(
    r"(具体的|詳細|詳しく|情報).{0,12}(提供|お伝え|説明|お答え|答え).{0,6}(でき|いたしかね|かね)|"
    r"(can(?:not|'t)|unable to|not able to).{0,30}(detail|describe|provide|specific)",
    re.IGNORECASE,
)
_GENERIC_CANNOT = re.compile(
    r"お手伝いできません|対応できません|お応えできません|お答えできません|"
    r"(具体的な)?情報を提供(することは)?できません|"
    r"I can(?:not|'t) (?:help|assist) with (?:that|this)|I(?:'m| am) (?:unable|not able) to (?:help|assist)",
    re.IGNORECASE,
)
_PERSON_ID = re.compile(
    r"(人物|人|誰|個人|顔).{0,10}(特定|識別|判別|同定).{0,10}(でき|いたしかね|しかね|控え)|"
    r"(can(?:not|'t)|unable to|won't|do not|don't).{0,20}identif(?:y|ication).{0,30}(people|person|individual|who)",
    re.IGNORECASE,
)

OVERRIDE_INSTRUCTION = "\n".join(
    [
        "[OVERRIDE]",
        "断り文（「申し訳ありませんが」「できません」「特定できません」など）は一切書かないでください。",
        "人物の特定や属性推定はしませんが、色・形・質感・構図・位置関係など、誰かを特定しない観察の描写は自由に行ってかまいません。",
        "ユーザー自身がこれまでに使った言葉を手がかりに、確認の問いかけをちょうど1つだけ返してください。",
    ]
)


def is_refusal(text: str) -> bool:
    if not text or not text.strip():
        return False
    flat = " ".join(text.split())
    apology_based = bool(_APOLOGY.search(flat) and _IMAGE_REF.search(flat) and _CANNOT_DETAIL.search(flat))
    generic = bool(_GENERIC_CANNOT.search(flat))
    person = bool(_PERSON_ID.search(flat))
    return apology_based or generic or person


@dataclass(frozen=True)
class RetryOutcome:
    text: str
    retried: bool
    original: str


def with_override(messages: Sequence[Message]) -> List[Message]:
    return [Message("system", OVERRIDE_INSTRUCTION), *messages]


def send_with_refusal_retry(
    send: SendFn,
    messages: Sequence[Message],
    image: Optional[ImageFile] = None,
    *,
    classify: Callable[[str], bool] = is_refusal,
) -> RetryOutcome:
    """Call ``send`` once; on a refusal, retry exactly once with the override instruction."""

    first = send(messages, image)
    if not classify(first):
        return RetryOutcome(text=first, retried=False, original=first)

    log.warning("Model reply classified as a refusal; retrying once with override instruction")
    try:
        second = send(with_override(messages), image)
    except TransportError as exc:
        log.warning("Refusal retry failed, keeping the first reply: %s", exc)
        return RetryOutcome(text=first, retried=True, original=first)
    if not (second or "").strip():
        return RetryOutcome(text=first, retried=True, original=first)
    return RetryOutcome(text=second, retried=True, original=first)


__all__ = [
    "OVERRIDE_INSTRUCTION",
    "RetryOutcome",
    "is_refusal",
    "send_with_refusal_retry",
    "with_override",
]
