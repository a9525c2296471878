"""Session state machine for the four-phase guided viewing dialogue.

``SessionState`` is the single explicit working copy of one browser session.
``PhaseOrchestrator`` drives it: each operation checks its guard, builds the
prompt through ``PHASE_CONTRACTS``, calls the transport and commits the
result.  A ledger is only written after a reply arrives, so a failed call
never leaves a half-written dialogue behind.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Callable, Iterator, List, Optional, Sequence, Set

from . import config
from .ledger import DialogLedger
from .model_engine import ChatTransport, TransportError
from .models import Candidate, ImageFile, Message, ObjectCard, Phase, SavedView
from .prompts import PHASE_CONTRACTS, OBJECTS_EMPTY, SUMMARY_EMPTY, final_synthesis, saved_views_summary
from .refusal import send_with_refusal_retry
from .response_utils import normalize_assistant_text, normalize_objects_for_prompt, parse_candidates, split_objects

log = logging.getLogger(__name__)


class PreconditionError(ValueError):
    """Raised before any transport call when an operation's input is missing."""


class PhaseBusyError(RuntimeError):
    """Raised when a transport call (or a save for the same label) is already in flight."""


class CandidateOutcome(Enum):
    FOUND = "found"
    EMPTY = "empty"
    FAILED = "failed"


def _dedupe(labels: Sequence[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for label in labels:
        if label and label not in seen:
            seen.add(label)
            out.append(label)
    return out


@dataclass
class SessionState:
    phase: Phase = Phase.OBSERVE
    image: Optional[ImageFile] = None
    impression: str = ""
    objects: str = ""
    object_cards: List[ObjectCard] = field(default_factory=list)
    current_object: Optional[str] = None
    deepen_dialogs: DialogLedger = field(default_factory=DialogLedger)
    deepen_summary: str = ""
    candidates: List[Candidate] = field(default_factory=list)
    excluded_labels: List[str] = field(default_factory=list)
    chosen_label: Optional[str] = None
    explore_dialogs: DialogLedger = field(default_factory=DialogLedger)
    explore_summary: str = ""
    saved_views: List[SavedView] = field(default_factory=list)
    saving_labels: Set[str] = field(default_factory=set)
    final_result: str = ""
    edited_final_result: str = ""
    busy: Optional[Phase] = None
    fallback_pending: bool = False
    editing_session_id: Optional[str] = None
    image_attachment_policy: str = field(default_factory=lambda: config.IMAGE_POLICY)
    deepen_image_sent: bool = False

    def saved_labels(self) -> List[str]:
        return [v.label for v in self.saved_views]

    def find_saved(self, label: str) -> Optional[SavedView]:
        for view in self.saved_views:
            if view.label == label:
                return view
        return None

    def find_candidate(self, label: str) -> Optional[Candidate]:
        for cand in self.candidates:
            if cand.label == label:
                return cand
        return self.find_saved(label)


class PhaseOrchestrator:
    def __init__(
        self,
        state: SessionState,
        transport: ChatTransport,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = state
        self.transport = transport
        self.clock = clock

    # ------------------------------------------------------------------
    # transport plumbing
    # ------------------------------------------------------------------
    @contextmanager
    def _busy(self, phase: Phase) -> Iterator[None]:
        if self.state.busy is not None:
            raise PhaseBusyError(f"Phase {int(self.state.busy)} is still waiting for a reply")
        self.state.busy = phase
        try:
            yield
        finally:
            self.state.busy = None

    def _ensure_idle(self) -> None:
        if self.state.busy is not None:
            raise PhaseBusyError(f"Phase {int(self.state.busy)} is still waiting for a reply")

    def _send(self, messages: Sequence[Message], image: Optional[ImageFile] = None) -> str:
        return self.transport.send_chat(messages, image=image)

    def _dialogue_reply(self, messages: Sequence[Message], image: Optional[ImageFile]) -> str:
        outcome = send_with_refusal_retry(lambda msgs, img: self._send(msgs, img), messages, image)
        return normalize_assistant_text(outcome.text)

    def _summarize(self, messages: Sequence[Message], phase: Phase) -> str:
        return (self._send(PHASE_CONTRACTS[phase].summarize(messages)) or "").strip()

    def _open_dialog(
        self,
        ledger: DialogLedger,
        key: str,
        phase: Phase,
        kickoff: Sequence[Message],
        image: Optional[ImageFile],
    ) -> List[Message]:
        with self._busy(phase):
            reply = self._dialogue_reply(kickoff, image)
        ledger.set(key, [*kickoff, Message("assistant", reply)])
        return ledger.get(key)

    def _continue_dialog(
        self,
        ledger: DialogLedger,
        key: str,
        phase: Phase,
        text: str,
        image: Optional[ImageFile],
    ) -> List[Message]:
        history = [*ledger.get(key), Message("user", text)]
        with self._busy(phase):
            reply = self._dialogue_reply(history, image)
        ledger.set(key, [*history, Message("assistant", reply)])
        return ledger.get(key)

    def _deepen_image(self, *, kickoff: bool) -> Optional[ImageFile]:
        policy = self.state.image_attachment_policy
        if policy == "always":
            return self.state.image
        if policy == "never" or not kickoff:
            return None
        return None if self.state.deepen_image_sent else self.state.image

    # ------------------------------------------------------------------
    # Observe -> Deepen
    # ------------------------------------------------------------------
    def start_deepen(self) -> List[ObjectCard]:
        self._ensure_idle()
        st = self.state
        if st.phase is not Phase.OBSERVE:
            raise PreconditionError("深掘りは観察ステップからのみ始められます。新しい鑑賞を始めてください")
        if st.image is None:
            raise PreconditionError("画像が未選択です")
        if not st.impression.strip():
            raise PreconditionError("第一印象を入力してください")
        if not st.objects.strip():
            raise PreconditionError("気になった物を入力してください")

        labels = _dedupe(split_objects(normalize_objects_for_prompt(st.objects)))
        if not labels:
            raise PreconditionError("気になった物を入力してください")

        st.object_cards = [ObjectCard(label) for label in labels]
        st.current_object = None
        st.deepen_dialogs = DialogLedger()
        st.deepen_summary = ""
        st.deepen_image_sent = False
        st.candidates = []
        st.excluded_labels = []
        st.chosen_label = None
        st.explore_dialogs = DialogLedger()
        st.explore_summary = ""
        st.saved_views = []
        st.saving_labels = set()
        st.fallback_pending = False
        st.phase = Phase.DEEPEN
        log.info("Entered deepen phase with %d object(s)", len(labels))
        return list(st.object_cards)

    # ------------------------------------------------------------------
    # Deepen
    # ------------------------------------------------------------------
    def select_object(self, label: str) -> List[Message]:
        self._ensure_idle()
        st = self.state
        if not any(card.label == label for card in st.object_cards):
            raise PreconditionError(f"Unknown object: {label!r}")

        if st.deepen_dialogs.has(label):
            st.current_object = label
            return st.deepen_dialogs.get(label)

        image = self._deepen_image(kickoff=True)
        kickoff = PHASE_CONTRACTS[Phase.DEEPEN].kickoff(st.impression, label)
        messages = self._open_dialog(st.deepen_dialogs, label, Phase.DEEPEN, kickoff, image)
        if image is not None:
            st.deepen_image_sent = True
        st.current_object = label
        return messages

    def send_deepen_message(self, text: str) -> List[Message]:
        st = self.state
        key = st.current_object
        if not key or not st.deepen_dialogs.has(key):
            raise PreconditionError("対話する物を選んでください")
        if not (text or "").strip():
            raise PreconditionError("メッセージを入力してください")
        return self._continue_dialog(st.deepen_dialogs, key, Phase.DEEPEN, text, self._deepen_image(kickoff=False))

    def complete_current_object(self) -> None:
        st = self.state
        if not st.current_object:
            raise PreconditionError("対話中の物がありません")
        for card in st.object_cards:
            if card.label == st.current_object:
                card.completed = True
        st.current_object = None

    def summarize_deepen(self) -> str:
        st = self.state
        with self._busy(Phase.DEEPEN):
            summary = self._summarize(st.deepen_dialogs.all_messages(), Phase.DEEPEN)
        if summary:
            st.deepen_summary = summary
        return st.deepen_summary

    # ------------------------------------------------------------------
    # Deepen -> Explore
    # ------------------------------------------------------------------
    def start_explore(self) -> CandidateOutcome:
        if not self.state.deepen_summary.strip():
            raise PreconditionError("先に深掘りの要約を作成してください")
        return self.generate_candidates()

    def generate_candidates(self, exclude_override: Optional[Sequence[str]] = None) -> CandidateOutcome:
        self._ensure_idle()
        st = self.state
        if st.image is None:
            raise PreconditionError("画像が未選択です")

        base = list(exclude_override) if exclude_override is not None else list(st.excluded_labels)
        excluded = _dedupe([*base, *st.saved_labels()])
        contract = PHASE_CONTRACTS[Phase.EXPLORE]
        messages = contract.candidates(
            st.objects or OBJECTS_EMPTY,
            st.deepen_summary or SUMMARY_EMPTY,
            excluded,
            list(st.saved_views),
        )

        try:
            with self._busy(Phase.EXPLORE):
                text = self._send(messages, st.image)
        except TransportError as exc:
            log.warning("Candidate generation failed: %s", exc)
            st.candidates = []
            st.fallback_pending = True
            return CandidateOutcome.FAILED

        parsed = parse_candidates(text)
        if not parsed:
            log.info("Candidate generation returned no usable candidates")
            st.candidates = []
            st.fallback_pending = True
            return CandidateOutcome.EMPTY

        st.candidates = parsed
        st.fallback_pending = False
        st.phase = Phase.EXPLORE
        log.info("Entered explore phase with %d candidate(s)", len(parsed))
        return CandidateOutcome.FOUND

    def regenerate_candidates(self) -> CandidateOutcome:
        self._ensure_idle()
        st = self.state
        st.excluded_labels = _dedupe(
            [*st.excluded_labels, *(c.label for c in st.candidates), *st.saved_labels()]
        )
        st.candidates = []
        st.chosen_label = None
        return self.generate_candidates(st.excluded_labels)

    def resolve_fallback(self, proceed: bool) -> Optional[str]:
        """Leave the no-candidates decision point: synthesize now, or go back to Deepen."""

        st = self.state
        if not st.fallback_pending:
            raise PreconditionError("No pending fallback decision")
        if proceed:
            result = self.generate_final()
            st.fallback_pending = False
            return result
        st.fallback_pending = False
        st.phase = Phase.DEEPEN
        return None

    # ------------------------------------------------------------------
    # Explore
    # ------------------------------------------------------------------
    def open_candidate(self, label: str) -> List[Message]:
        self._ensure_idle()
        st = self.state
        base = st.find_candidate(label)
        if base is None:
            raise PreconditionError(f"Unknown viewpoint: {label!r}")

        if st.explore_dialogs.has(label):
            st.chosen_label = label
            return st.explore_dialogs.get(label)

        kickoff = PHASE_CONTRACTS[Phase.EXPLORE].kickoff(st.impression, st.deepen_summary, base)
        messages = self._open_dialog(st.explore_dialogs, label, Phase.EXPLORE, kickoff, None)
        st.chosen_label = label
        return messages

    def send_explore_message(self, text: str) -> List[Message]:
        st = self.state
        key = st.chosen_label
        if not key or not st.explore_dialogs.has(key):
            raise PreconditionError("視点を選んでください")
        if not (text or "").strip():
            raise PreconditionError("メッセージを入力してください")
        return self._continue_dialog(st.explore_dialogs, key, Phase.EXPLORE, text, None)

    def record_view(self) -> SavedView:
        st = self.state
        label = st.chosen_label
        if not label:
            raise PreconditionError("記録する視点を選んでください")
        base = st.find_candidate(label)
        if base is None:
            raise PreconditionError("記録対象が見つかりませんでした")
        if not st.explore_dialogs.has(label):
            raise PreconditionError("この視点の対話がまだありません")
        if label in st.saving_labels:
            raise PhaseBusyError(f"Already recording {label!r}")

        st.saving_labels.add(label)
        try:
            summary = self._summarize(st.explore_dialogs.get(label), Phase.EXPLORE)
        finally:
            st.saving_labels.discard(label)

        view = SavedView.from_candidate(base, saved_at=self.clock(), summary=summary)
        for idx, existing in enumerate(st.saved_views):
            if existing.label == label:
                st.saved_views[idx] = view
                break
        else:
            st.saved_views.append(view)
        st.explore_summary = summary
        log.info("Recorded viewpoint %r (%d saved)", label, len(st.saved_views))
        return view

    # ------------------------------------------------------------------
    # Interpret
    # ------------------------------------------------------------------
    def _fresh_deepen_summary(self) -> str:
        messages = self.state.deepen_dialogs.all_messages()
        if not messages:
            return ""
        try:
            return self._summarize(messages, Phase.DEEPEN)
        except TransportError as exc:
            log.warning("Fresh deepen summary failed, using cached summary: %s", exc)
            return ""

    def _fresh_explore_summary(self) -> str:
        recorded = [v for v in self.state.saved_views if (v.summary or "").strip()]
        if not recorded:
            return ""
        try:
            return (self._send(saved_views_summary(recorded)) or "").strip()
        except TransportError as exc:
            log.warning("Fresh viewpoint summary failed, using cached summary: %s", exc)
            return ""

    def generate_final(self) -> str:
        st = self.state
        if st.phase not in (Phase.DEEPEN, Phase.EXPLORE, Phase.INTERPRET) and not st.fallback_pending:
            raise PreconditionError("最終解釈は深掘りを始めてから生成できます")
        with self._busy(Phase.INTERPRET):
            fresh_deepen = self._fresh_deepen_summary()
            if fresh_deepen:
                st.deepen_summary = fresh_deepen
            fresh_explore = self._fresh_explore_summary()
            if fresh_explore:
                st.explore_summary = fresh_explore

            messages = final_synthesis(
                st.impression,
                st.objects,
                fresh_deepen or st.deepen_summary or config.NO_DATA,
                fresh_explore or st.explore_summary or config.NO_DATA,
            )
            out = (self._send(messages) or "").strip()

        st.final_result = out
        st.edited_final_result = out
        st.fallback_pending = False
        st.phase = Phase.INTERPRET
        log.info("Generated final interpretation (%d chars)", len(out))
        return out

    def edit_final(self, text: str) -> None:
        self.state.edited_final_result = text or ""

    def return_to(self, phase: Phase) -> None:
        self._ensure_idle()
        if self.state.phase is not Phase.INTERPRET:
            raise PreconditionError("解釈ステップからのみ戻れます")
        if phase not in (Phase.DEEPEN, Phase.EXPLORE):
            raise PreconditionError(f"Cannot return to phase {int(phase)}")
        self.state.phase = phase
        self.state.fallback_pending = False

    def reset(self) -> SessionState:
        """Back to Observe with a blank session; the next save creates a new record."""

        self._ensure_idle()
        fresh = SessionState(image_attachment_policy=self.state.image_attachment_policy)
        for f in fields(SessionState):
            setattr(self.state, f.name, getattr(fresh, f.name))
        log.info("Session reset to observe phase")
        return self.state


__all__ = [
    "CandidateOutcome",
    "PhaseBusyError",
    "PhaseOrchestrator",
    "PreconditionError",
    "SessionState",
]
