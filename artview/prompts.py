"""Prompt builders for every phase of the guided viewing dialogue.

All builders are pure: they take phase-local state and return the exact
``Message`` list to send.  Wording is free to change; the contract is the
shape (which roles appear, in which order, and which turns are hidden).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .models import Candidate, Message, Phase, SavedView

TRANSCRIPT_EMPTY = "（対話ログなし）"
SUMMARY_EMPTY = "（要約なし）"
OBJECTS_EMPTY = "（未入力）"

_THREE_PART_REPLY = (
    "毎ターン、日本語の自然文で次の3文だけを返してください。JSON やコードブロックは使わないこと。\n"
    "1) ユーザーの観察を短く言い換えて受け止める。\n"
    "2) その観察が印象（感情や雰囲気）とどう関わりそうかを問う。\n"
    "3) 次の一歩になる問いかけを1つだけ添える（同じ聞き方を繰り返さない）。"
)

_LENSES = (
    "問いかけの観点:\n"
    "- 形（輪郭、まとまり、反復）\n"
    "- 質感（表面、重さ、素材感）\n"
    "- 空間（位置、距離、余白、周囲との関係）"
)


def deepen_system_prompt() -> str:
    return "\n".join(
        [
            "あなたは対話型鑑賞のガイドです。ユーザーの観察と言語化を支えることが目的です。",
            "",
            "守ること:",
            "1. ユーザーが挙げた物以外には触れない。新しい物を持ち出さない。",
            "2. 状態を表す言葉（溶けている、歪んでいる 等）をあなたから先に使わない。ユーザーの言葉の引用は可。",
            "3. 挙げられた物について、1つずつ抜けなく問いかける。",
            "",
            _LENSES,
            "",
            _THREE_PART_REPLY,
        ]
    )


def deepen_kickoff(impression: str, label: str) -> List[Message]:
    """Hidden system instruction plus a hidden user turn naming the object."""

    return [
        Message("system", deepen_system_prompt(), hidden=True),
        Message(
            "user",
            f"印象：{impression}\n現在深掘り中の物：{label}\n\n"
            "この物について「形／質感／空間」のどれか1つの観点から、問いかけを1つしてください。",
            hidden=True,
        ),
    ]


def transcript_of(messages: Sequence[Message]) -> str:
    """User/assistant turns as ``Speaker: text`` lines; system turns are dropped, hidden ones kept."""

    lines = []
    for m in messages:
        if m.role == "system":
            continue
        speaker = "User" if m.role == "user" else "Assistant"
        lines.append(f"{speaker}: {m.content}")
    return "\n".join(lines)


def summarize_transcript(messages: Sequence[Message]) -> List[Message]:
    return [
        Message(
            "system",
            "あなたは要約者です。次の対話を要約してください。\n\n"
            "形式: 物ごとに、ユーザーがどう観察したかを簡潔に1行でまとめる。\n"
            "例：\n・人：不安そうに見える、背景から浮いている\n・オレンジ：溶けたような質感、明るい色\n\n"
            "前置きや解説は不要です。",
        ),
        Message("user", transcript_of(messages) or TRANSCRIPT_EMPTY),
    ]


def candidate_request(
    objects: str,
    deepen_summary: str,
    excluded_labels: Sequence[str],
    saved_views: Sequence[SavedView],
) -> List[Message]:
    """Ask for unmentioned concrete elements as ``{"candidates": [...]}`` JSON only."""

    excluded = ""
    if excluded_labels:
        excluded = "\n\n[既に提示した候補（再提示禁止）]\n" + "\n".join(f"- {label}" for label in excluded_labels)

    recorded = ""
    if saved_views:
        rows = []
        for v in saved_views:
            row = f"- {v.label} / {v.location} / {v.element} / 根拠:{v.evidence}"
            if v.summary:
                row += f" / 要約:{v.summary}"
            rows.append(row)
        recorded = "\n\n[記録済みの視点（意味が近い候補も再提示禁止）]\n" + "\n".join(rows)

    system = "\n".join(
        [
            "あなたは画像を観察する専門家です。",
            "JSON だけを返してください（説明文、前置き、コードフェンスは禁止）。",
            '出力スキーマ: {"candidates":[{"label":string,"element":string,"location":string,"evidence":string}]}',
            "",
            "添付画像に実際に描かれている具象物のうち、ユーザーがまだ触れていないものを列挙してください。",
            "- はっきり見える物を優先し、背景や周辺の小さな物も含める。",
            "- 「人」「人物」「人影」、「木」「樹木」「植物」のような言い換えは同一の物とみなして除外する。",
            "- 記録済みの視点と実質的に同じ焦点の候補は出さない。",
            "",
            "各フィールド:",
            "1) label: 物の名前（時計、鳥、机、窓 など）。",
            "2) element: 画像で観察できる特徴（「〜と思われる」のような推量可）。",
            "3) location: 画像内の位置（手前、中央、左側、上部 など）。",
            "4) evidence: その物があると判断した根拠。",
            "人が描かれていても label は「人影」のように非同定の表現にし、人物の特定や属性推定はしない。",
            "固有名詞（作者名、作品名、主義名 等）は使わない。候補は3つ以上。",
        ]
    )
    user = (
        f"[ユーザーが最初に挙げた物]\n{objects or OBJECTS_EMPTY}\n\n"
        f"[深掘り対話の要約]\n{deepen_summary or SUMMARY_EMPTY}"
        f"{excluded}{recorded}\n\n"
        "[出力]\n上記で触れられていない具象物を candidates に列挙し、JSON で返してください。"
    )
    return [Message("system", system), Message("user", user)]


def explore_system_prompt() -> str:
    return "\n".join(
        [
            "あなたは対話型鑑賞のガイドです。ユーザーが選んだ具象物について深掘りし、意味づけを支えてください。",
            "",
            "守ること:",
            "1. 扱うのは選ばれた具象物だけ。新しい物を持ち出さない。",
            "2. 状態を表す言葉をあなたから先に使わない。",
            "3. 物語を断定して教えず、ユーザーの言葉を引き出す。",
            "4. 人影であっても誰かの特定や属性推定（性別、年齢、職業 等）はしない。形・質感・空間だけを扱う。",
            "5. 「申し訳ありませんが〜できません」のような断り文は書かず、観察の問いを続ける。",
            "",
            _LENSES,
            "",
            _THREE_PART_REPLY,
        ]
    )


def explore_kickoff(impression: str, deepen_summary: str, candidate: Candidate) -> List[Message]:
    return [
        Message("system", explore_system_prompt(), hidden=True),
        Message(
            "user",
            f"全体の印象：{impression}\n"
            f"深掘り対話の要約：{deepen_summary or SUMMARY_EMPTY}\n\n"
            f"選んだ具象物：{candidate.label}\n"
            f"推測される特徴：{candidate.element}\n"
            f"位置：{candidate.location}\n"
            f"根拠：{candidate.evidence}\n\n"
            "この具象物について「形／質感／空間」のいずれか1つの観点から、次の一歩になる問いかけを1つしてください。",
            hidden=True,
        ),
    ]


def saved_views_summary(saved_views: Sequence[SavedView]) -> List[Message]:
    if saved_views:
        blocks = []
        for v in sorted(saved_views, key=lambda item: item.saved_at, reverse=True):
            summary = (v.summary or "").strip() or "（未記録）"
            blocks.append(
                "\n".join(
                    [
                        f"- 対象: {v.label}",
                        f"  位置: {v.location}",
                        f"  特徴: {v.element}",
                        f"  根拠: {v.evidence}",
                        f"  要約: {summary}",
                    ]
                )
            )
        body = "\n\n".join(blocks)
    else:
        body = "（記録済み視点なし）"
    return [
        Message(
            "system",
            "あなたは要約者です。以下はユーザーが記録した視点の一覧です。\n"
            "最終的な解釈に使えるよう、「対象 → ユーザーの観察や気づき」の箇条書きで簡潔にまとめてください。\n"
            "前置き、解説、新しい解釈の付け足しは不要です。",
        ),
        Message("user", body),
    ]


def final_synthesis(impression: str, objects: str, deepen_summary: str, explore_summary: str) -> List[Message]:
    return [
        Message(
            "system",
            "あなたはユーザーの思考を整理する編集者です。ユーザー自身の発見を大切にした、主体的な鑑賞文を書いてください。",
        ),
        Message(
            "user",
            f"直感：{impression}\n観察：{objects}\n意味：{deepen_summary}\n拡張：{explore_summary}\n\n"
            "これらを統合し、ひとつの物語のような解釈にまとめてください。",
        ),
    ]


@dataclass(frozen=True)
class PhaseContract:
    """Per-phase prompt hooks so one state machine serves every phase."""

    kickoff: Callable[..., List[Message]]
    summarize: Callable[[Sequence[Message]], List[Message]]
    candidates: Optional[Callable[..., List[Message]]] = None


PHASE_CONTRACTS: Dict[Phase, PhaseContract] = {
    Phase.DEEPEN: PhaseContract(kickoff=deepen_kickoff, summarize=summarize_transcript),
    Phase.EXPLORE: PhaseContract(
        kickoff=explore_kickoff,
        summarize=summarize_transcript,
        candidates=candidate_request,
    ),
}


__all__ = [
    "OBJECTS_EMPTY",
    "PHASE_CONTRACTS",
    "PhaseContract",
    "SUMMARY_EMPTY",
    "TRANSCRIPT_EMPTY",
    "candidate_request",
    "deepen_kickoff",
    "deepen_system_prompt",
    "explore_kickoff",
    "explore_system_prompt",
    "final_synthesis",
    "saved_views_summary",
    "summarize_transcript",
    "transcript_of",
]
