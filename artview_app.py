#!/usr/bin/env python3

# Copyright (c) 2025 James Baker VA7ODR
#
# Permission is hereby granted, free of charge, to any person obtaining a copy of this software
# and associated documentation files (the “Software”), to deal in the Software without
# restriction, including without limitation the rights to use, copy, modify, merge, publish,
# distribute, sublicense, and/or sell copies of the Software, and to permit persons to whom the
# Software is furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all copies or
# substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED “AS IS”, WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL
# THE AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR
# OTHER LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE,
# ARISING FROM, OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR
# OTHER DEALINGS IN THE SOFTWARE.

from __future__ import annotations

import html
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import gradio as gr

import artview.config as artview_config
from artview.model_engine import ChatTransport, TransportError
from artview.models import Message, Phase
from artview.orchestrator import (
    CandidateOutcome,
    PhaseBusyError,
    PhaseOrchestrator,
    PreconditionError,
    SessionState,
)
from artview.thumbnails import PreviewSlot, load_image_file, thumbnail_data_url
from artview.ui_utils import chat_rows, safe_component
from session_history import (
    SessionStore,
    SessionStoreError,
    apply_record,
    make_stores,
    snapshot_state,
)


artview_config.reload_from_environment()

_safe_component = safe_component
log = logging.getLogger(__name__)

PHASE_TITLES = {
    Phase.OBSERVE: "観察：第一印象と気になった物",
    Phase.DEEPEN: "深掘り：物ごとの対話",
    Phase.EXPLORE: "別の視点：まだ触れていない物",
    Phase.INTERPRET: "解釈：鑑賞文の仕上げ",
}

_UNCHANGED = object()


@dataclass
class AppDependencies:
    transport: ChatTransport
    session_store: SessionStore


transport: ChatTransport
session_store: SessionStore
_dependencies: AppDependencies | None = None


def build_dependencies(
    *,
    storage: str | None = None,
    base_dir: Path | None = None,
    transport_factory: Optional[Callable[[], ChatTransport]] = None,
) -> AppDependencies:
    transport_instance = transport_factory() if transport_factory else ChatTransport()
    records, blobs = make_stores(storage, base_dir)
    store = SessionStore(records, blobs)
    try:
        store.sweep_orphans()
    except (SessionStoreError, OSError) as exc:
        log.warning("Skipping orphaned thumbnail sweep: %s", exc)
    return AppDependencies(transport=transport_instance, session_store=store)


def get_dependencies() -> AppDependencies:
    if _dependencies is None:
        raise RuntimeError("App dependencies have not been configured")
    return _dependencies


def configure_dependencies(deps: AppDependencies) -> AppDependencies:
    global transport, session_store, _dependencies
    _dependencies = deps
    transport = deps.transport
    session_store = deps.session_store
    return deps


configure_dependencies(build_dependencies())


# ----------------------------------------------------------------------
# Event log
# ----------------------------------------------------------------------
_LOG_MAX_ENTRIES = 200
_LOG_DISPLAY_TAIL = 80


def _shorten_text(text: str, limit: int = 160) -> str:
    text = " ".join((text or "").split())
    if len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)] + "…"


def _append_event_log(state: Dict[str, Any], message: str) -> List[str]:
    entries = list(state.get("event_log", []))
    timestamp = time.strftime("%H:%M:%S")
    entries.append(f"[{timestamp}] {message}")
    if len(entries) > _LOG_MAX_ENTRIES:
        entries = entries[-_LOG_MAX_ENTRIES:]
    state["event_log"] = entries
    return entries


def _event_log_text(state: Dict[str, Any]) -> str:
    entries = state.get("event_log", [])
    if not isinstance(entries, list):
        return ""
    return "\n".join(entries[-_LOG_DISPLAY_TAIL:])


# ----------------------------------------------------------------------
# UI state
# ----------------------------------------------------------------------
def _initial_state() -> Dict[str, Any]:
    state: Dict[str, Any] = {
        "session": SessionState(),
        "event_log": [],
        "notice": "",
        "preview_session_id": None,
        "image_preview": PreviewSlot(),
        "history_preview": PreviewSlot(),
    }
    _append_event_log(state, "Session initialized.")
    return state


def _session(state: Dict[str, Any]) -> SessionState:
    session = state.get("session")
    if not isinstance(session, SessionState):
        session = SessionState()
        state["session"] = session
    return session


def _run(state: Dict[str, Any], action: str, fn: Callable[[PhaseOrchestrator], Any]) -> Tuple[bool, Any]:
    """Call ``fn`` with an orchestrator; every expected failure becomes a short notice."""

    state["notice"] = ""
    orchestrator = PhaseOrchestrator(_session(state), transport)
    try:
        result = fn(orchestrator)
    except (PreconditionError, PhaseBusyError) as exc:
        state["notice"] = f"⚠️ {exc}"
        _append_event_log(state, f"{action} blocked: {exc}")
        return False, None
    except TransportError as exc:
        log.warning("%s failed: %s", action, exc)
        state["notice"] = "⚠️ モデルとの通信に失敗しました。もう一度お試しください。"
        _append_event_log(state, f"{action} failed: {_shorten_text(str(exc), limit=120)}")
        return False, None
    except SessionStoreError as exc:
        log.warning("%s could not reach session history: %s", action, exc)
        state["notice"] = "⚠️ 履歴を保存・読み込みできませんでした。対話はそのまま続けられます。"
        _append_event_log(state, f"{action} storage error: {exc}")
        return False, None
    _append_event_log(state, f"{action} completed.")
    return True, result


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------
def _phase_markdown(session: SessionState) -> str:
    title = PHASE_TITLES.get(session.phase, "")
    text = f"### Step {int(session.phase)} / 4　{title}"
    if session.busy is not None:
        text += "　⏳ 応答を待っています…"
    return text


def _object_choices(session: SessionState) -> List[Tuple[str, str]]:
    return [(("✅ " if card.completed else "") + card.label, card.label) for card in session.object_cards]


def _viewpoint_choices(session: SessionState) -> List[Tuple[str, str]]:
    choices = [(c.label, c.label) for c in session.candidates]
    shown = {c.label for c in session.candidates}
    for view in session.saved_views:
        if view.label not in shown:
            choices.append((f"📌 {view.label}", view.label))
    return choices


def _candidates_markdown(session: SessionState) -> str:
    if not session.candidates:
        return ""
    lines = []
    for cand in session.candidates:
        lines.append(f"- **{cand.label}**（{cand.location}）: {cand.element}  \n  根拠: {cand.evidence}")
    return "\n".join(lines)


def _saved_views_markdown(session: SessionState) -> str:
    if not session.saved_views:
        return "_記録した視点はまだありません。_"
    lines = ["#### 記録した視点"]
    for view in sorted(session.saved_views, key=lambda v: v.saved_at, reverse=True):
        stamp = time.strftime("%H:%M", time.localtime(view.saved_at)) if view.saved_at else ""
        lines.append(f"- **{view.label}** {stamp}  \n  {_shorten_text(view.summary or '', limit=200)}")
    return "\n".join(lines)


def _pending_bubble(text: str) -> str:
    safe_text = html.escape(text).replace("\n", "<br>")
    return (
        "<div class=\"pending-response-bubble\">"
        f"<span class=\"pending-response-text\">{safe_text}</span>"
        "</div>"
    )


def _dialog_rows(messages: List[Message], pending_user: Optional[str] = None) -> List[Dict[str, Any]]:
    rows = chat_rows(messages)
    if pending_user is not None:
        rows.append({"role": "user", "content": pending_user})
        rows.append({"role": "assistant", "content": _pending_bubble("考えています…")})
    return rows


def _history_choices() -> List[Tuple[str, str]]:
    try:
        records = session_store.list()
    except SessionStoreError as exc:
        log.warning("Could not list saved sessions: %s", exc)
        return []
    return [(record.title, record.id) for record in records]


def _history_markdown(state: Dict[str, Any]) -> str:
    session_id = state.get("preview_session_id")
    if not session_id:
        return ""
    try:
        record = session_store.get(session_id)
    except SessionStoreError as exc:
        log.warning("Could not read session %s: %s", session_id, exc)
        return ""
    if record is None:
        return ""
    final = record.edited_final_result or record.final_result or "（最終解釈なし）"
    return "\n".join(
        [
            f"**印象**: {record.impression}",
            f"**気になった物**: {record.objects}",
            f"**記録した視点**: {len(record.saved_views)} 件",
            "",
            _shorten_text(final, limit=400),
        ]
    )


def _render(
    state: Dict[str, Any],
    *,
    image: Any = _UNCHANGED,
    history_image: Any = _UNCHANGED,
    sync_inputs: bool = False,
    deepen_pending: Optional[str] = None,
    explore_pending: Optional[str] = None,
) -> Tuple[Any, ...]:
    session = _session(state)
    deepen_messages = session.deepen_dialogs.get(session.current_object) if session.current_object else []
    explore_messages = session.explore_dialogs.get(session.chosen_label) if session.chosen_label else []
    return (
        state,
        _phase_markdown(session),
        state.get("notice", ""),
        gr.update(choices=_object_choices(session), value=session.current_object),
        _dialog_rows(deepen_messages, deepen_pending),
        session.deepen_summary,
        gr.update(choices=_viewpoint_choices(session), value=session.chosen_label),
        _candidates_markdown(session),
        _dialog_rows(explore_messages, explore_pending),
        _saved_views_markdown(session),
        gr.update(visible=session.fallback_pending),
        gr.update(value=session.edited_final_result),
        gr.update(choices=_history_choices(), value=state.get("preview_session_id")),
        _history_markdown(state),
        _event_log_text(state),
        gr.update() if image is _UNCHANGED else gr.update(value=image),
        gr.update() if history_image is _UNCHANGED else gr.update(value=history_image),
        gr.update(value=session.impression) if sync_inputs else gr.update(),
        gr.update(value=session.objects) if sync_inputs else gr.update(),
    )


def _rehydrate_state(state: Dict[str, Any]) -> Tuple[Any, ...]:
    return _render(state or _initial_state())


# ----------------------------------------------------------------------
# Observe
# ----------------------------------------------------------------------
def on_upload(path: Optional[str], state: Dict[str, Any]):
    session = _session(state)
    state["notice"] = ""
    if not path:
        session.image = None
        _append_event_log(state, "Image cleared.")
        return _render(state)
    try:
        session.image = load_image_file(path)
    except (ValueError, OSError) as exc:
        session.image = None
        state["notice"] = f"⚠️ 画像を読み込めませんでした: {exc}"
        _append_event_log(state, f"Image upload rejected: {exc}")
        return _render(state)
    _append_event_log(state, f"Image loaded: {session.image.name} ({len(session.image.data)} bytes).")
    return _render(state)


def on_start_deepen(impression: str, objects: str, state: Dict[str, Any]):
    session = _session(state)
    if session.phase is Phase.OBSERVE:
        session.impression = impression or ""
        session.objects = objects or ""
    ok, cards = _run(state, "Start deepen", lambda o: o.start_deepen())
    if ok:
        _append_event_log(state, f"Objects to deepen: {', '.join(c.label for c in cards)}.")
    return _render(state)


# ----------------------------------------------------------------------
# Deepen
# ----------------------------------------------------------------------
def on_select_object(label: Optional[str], state: Dict[str, Any]):
    if not label:
        return _render(state)
    _run(state, f"Open object '{_shorten_text(label, limit=40)}'", lambda o: o.select_object(label))
    return _render(state)


def on_send_deepen(text: str, state: Dict[str, Any]) -> Generator[Tuple[Any, ...], None, None]:
    session = _session(state)
    if session.current_object and (text or "").strip() and session.busy is None:
        yield (*_render(state, deepen_pending=text), gr.update(value=""))
    ok, _ = _run(state, "Deepen message", lambda o: o.send_deepen_message(text))
    yield (*_render(state), gr.update(value="" if ok else text))


def on_complete_object(state: Dict[str, Any]):
    _run(state, "Complete object", lambda o: o.complete_current_object())
    return _render(state)


def on_summarize_deepen(state: Dict[str, Any]):
    ok, _ = _run(state, "Summarize deepen dialogue", lambda o: o.summarize_deepen())
    if ok:
        state["notice"] = "✅ 深掘りの要約を作成しました"
    return _render(state)


# ----------------------------------------------------------------------
# Explore
# ----------------------------------------------------------------------
def _report_candidates(state: Dict[str, Any], outcome: Optional[CandidateOutcome]) -> None:
    if outcome is CandidateOutcome.EMPTY:
        state["notice"] = "新しい視点の候補が見つかりませんでした。このまま最終解釈へ進むか、深掘りに戻るかを選んでください。"
    elif outcome is CandidateOutcome.FAILED:
        state["notice"] = "⚠️ 候補の生成に失敗しました。このまま最終解釈へ進むか、深掘りに戻るかを選んでください。"
    elif outcome is CandidateOutcome.FOUND:
        count = len(_session(state).candidates)
        _append_event_log(state, f"{count} candidate viewpoint(s) proposed.")


def on_start_explore(state: Dict[str, Any]):
    _, outcome = _run(state, "Generate candidates", lambda o: o.start_explore())
    _report_candidates(state, outcome)
    return _render(state)


def on_regenerate_candidates(state: Dict[str, Any]):
    _, outcome = _run(state, "Regenerate candidates", lambda o: o.regenerate_candidates())
    _report_candidates(state, outcome)
    return _render(state)


def on_choose_viewpoint(label: Optional[str], state: Dict[str, Any]):
    if not label:
        return _render(state)
    _run(state, f"Open viewpoint '{_shorten_text(label, limit=40)}'", lambda o: o.open_candidate(label))
    return _render(state)


def on_send_explore(text: str, state: Dict[str, Any]) -> Generator[Tuple[Any, ...], None, None]:
    session = _session(state)
    if session.chosen_label and (text or "").strip() and session.busy is None:
        yield (*_render(state, explore_pending=text), gr.update(value=""))
    ok, _ = _run(state, "Explore message", lambda o: o.send_explore_message(text))
    yield (*_render(state), gr.update(value="" if ok else text))


def on_record_view(state: Dict[str, Any]):
    ok, view = _run(state, "Record viewpoint", lambda o: o.record_view())
    if ok:
        state["notice"] = f"✅ 「{view.label}」を記録しました"
    return _render(state)


def on_fallback_proceed(state: Dict[str, Any]):
    _run(state, "Proceed to final interpretation", lambda o: o.resolve_fallback(True))
    return _render(state)


def on_fallback_back(state: Dict[str, Any]):
    _run(state, "Return to deepen", lambda o: o.resolve_fallback(False))
    return _render(state)


# ----------------------------------------------------------------------
# Interpret
# ----------------------------------------------------------------------
def on_generate_final(state: Dict[str, Any]):
    ok, text = _run(state, "Generate final interpretation", lambda o: o.generate_final())
    if ok and not text:
        state["notice"] = "⚠️ モデルから本文が返ってきませんでした。もう一度生成してください。"
    return _render(state)


def on_edit_final(text: str, state: Dict[str, Any]):
    PhaseOrchestrator(_session(state), transport).edit_final(text)
    return state


def on_back_to_deepen(state: Dict[str, Any]):
    _run(state, "Back to deepen", lambda o: o.return_to(Phase.DEEPEN))
    return _render(state)


def on_back_to_explore(state: Dict[str, Any]):
    _run(state, "Back to explore", lambda o: o.return_to(Phase.EXPLORE))
    return _render(state)


# ----------------------------------------------------------------------
# Session history
# ----------------------------------------------------------------------
def _save_current(state: Dict[str, Any]) -> Optional[str]:
    session = _session(state)
    record = snapshot_state(session)
    thumb: Optional[str] = None
    if session.image is not None:
        try:
            thumb = thumbnail_data_url(session.image)
        except ValueError as exc:
            log.warning("Could not build thumbnail for session %s: %s", record.id, exc)
    saved = session_store.save(record, thumb)
    session.editing_session_id = saved.id
    state["preview_session_id"] = saved.id
    return saved.id


def on_save_session(state: Dict[str, Any]):
    ok, session_id = _run(state, "Save session", lambda _o: _save_current(state))
    if ok:
        state["notice"] = "💾 履歴に保存しました"
        _append_event_log(state, f"Session {session_id} saved.")
    return _render(state)


def _has_content(session: SessionState) -> bool:
    return bool(session.impression.strip() or len(session.deepen_dialogs) or session.final_result)


def on_new_session(save_first: bool, state: Dict[str, Any]):
    session = _session(state)
    if save_first and _has_content(session):
        ok, _ = _run(state, "Save session", lambda _o: _save_current(state))
        if not ok:
            return _render(state)
    ok, _ = _run(state, "New session", lambda o: o.reset())
    if not ok:
        return _render(state)
    state["image_preview"].release()
    state["history_preview"].release()
    state["preview_session_id"] = None
    return _render(state, image=None, history_image=None, sync_inputs=True)


def on_history_select(session_id: Optional[str], state: Dict[str, Any]):
    state["preview_session_id"] = session_id or None
    preview: PreviewSlot = state["history_preview"]
    if not session_id:
        preview.release()
        return _render(state, history_image=None)
    ok, restored = _run(state, "Preview session", lambda _o: session_store.restore(session_id))
    image = restored.image if ok and restored is not None else None
    return _render(state, history_image=preview.show(image))


def on_restore_session(state: Dict[str, Any]):
    session_id = state.get("preview_session_id")
    if not session_id:
        state["notice"] = "⚠️ 復元する履歴を選んでください"
        return _render(state)
    ok, restored = _run(state, "Restore session", lambda _o: session_store.restore(session_id))
    if not ok:
        return _render(state)
    if restored is None:
        state["notice"] = "⚠️ 履歴が見つかりませんでした"
        return _render(state)
    session = _session(state)
    if session.busy is not None:
        state["notice"] = "⚠️ 応答待ちの間は復元できません"
        return _render(state)
    apply_record(session, restored.record, restored.image)
    if restored.image is None:
        state["notice"] = "履歴を復元しました（画像は見つかりませんでした）"
    else:
        state["notice"] = "✅ 履歴を復元しました"
    path = state["image_preview"].show(restored.image)
    return _render(state, image=path, sync_inputs=True)


def on_delete_session(state: Dict[str, Any]):
    session_id = state.get("preview_session_id")
    if not session_id:
        state["notice"] = "⚠️ 削除する履歴を選んでください"
        return _render(state)
    ok, removed = _run(state, "Delete session", lambda _o: session_store.delete(session_id))
    if ok:
        session = _session(state)
        if session.editing_session_id == session_id:
            session.editing_session_id = None
        state["preview_session_id"] = None
        state["history_preview"].release()
        state["notice"] = "🗑️ 履歴を削除しました" if removed else "⚠️ 履歴が見つかりませんでした"
    return _render(state, history_image=None)


# ----------------------------------------------------------------------
# Layout
# ----------------------------------------------------------------------
with gr.Blocks(title="ArtView") as demo:
    gr.Markdown("# ArtView 対話型鑑賞アシスタント")
    style_component = getattr(gr, "HTML", None) or gr.Markdown
    _safe_component(
        style_component,
        """
        <style>
        .artview-chat .pending-response-bubble {
            background: var(--background-fill-secondary);
            border: 1px dashed var(--border-color-primary);
            border-radius: var(--radius-lg);
            display: inline-block;
            font-size: 0.88em;
            padding: 0.4rem 0.75rem;
        }
        .artview-chat .pending-response-text {
            display: block;
            opacity: 0.75;
        }
        </style>
        """,
    )

    initial_state = _initial_state()
    state = gr.State(value=initial_state)

    phase_md = gr.Markdown(_phase_markdown(initial_state["session"]))
    notice_md = gr.Markdown("")

    with gr.Row():
        with gr.Column(scale=2):
            image_input = gr.Image(label="作品画像", type="filepath", height=320)
            impression_box = gr.Textbox(label="第一印象", placeholder="例：静かな感じ", lines=2)
            objects_box = gr.Textbox(label="気になった物（、や改行で区切る）", placeholder="例：人、机")
            start_btn = gr.Button("深掘りを始める", variant="primary")

        with gr.Column(scale=3):
            with gr.Tab("深掘り"):
                object_radio = gr.Radio(label="対話する物", choices=[], interactive=True)
                deepen_chat = _safe_component(
                    gr.Chatbot,
                    value=[],
                    height=360,
                    type="messages",
                    elem_classes=["artview-chat"],
                    optional_keys=("type", "elem_classes"),
                )
                deepen_input = gr.Textbox(label="メッセージ", placeholder="見えたこと、感じたことを書いてください")
                with gr.Row():
                    deepen_send = gr.Button("送信", variant="primary")
                    complete_btn = gr.Button("この物の対話を終える")
                    summarize_btn = gr.Button("深掘りを要約する")
                deepen_summary_box = gr.Textbox(label="深掘りの要約", lines=4, interactive=False)
                to_explore_btn = gr.Button("別の視点を探す")

            with gr.Tab("別の視点"):
                candidate_radio = gr.Radio(label="視点の候補（📌 は記録済み）", choices=[], interactive=True)
                candidates_md = gr.Markdown("")
                with gr.Group(visible=False) as fallback_group:
                    gr.Markdown("新しい視点の候補がありません。次にどうしますか？")
                    with gr.Row():
                        fallback_proceed_btn = gr.Button("このまま最終解釈へ", variant="primary")
                        fallback_back_btn = gr.Button("深掘りに戻る")
                explore_chat = _safe_component(
                    gr.Chatbot,
                    value=[],
                    height=360,
                    type="messages",
                    elem_classes=["artview-chat"],
                    optional_keys=("type", "elem_classes"),
                )
                explore_input = gr.Textbox(label="メッセージ")
                with gr.Row():
                    explore_send = gr.Button("送信", variant="primary")
                    record_btn = gr.Button("この視点を記録する")
                    regenerate_btn = gr.Button("候補を出し直す")
                saved_md = gr.Markdown(_saved_views_markdown(initial_state["session"]))
                final_btn = gr.Button("最終解釈を生成する", variant="primary")

            with gr.Tab("解釈"):
                final_box = _safe_component(
                    gr.Textbox,
                    label="鑑賞文（編集できます）",
                    lines=12,
                    show_copy_button=True,
                )
                with gr.Row():
                    regenerate_final_btn = gr.Button("もう一度生成する")
                    back_deepen_btn = gr.Button("深掘りに戻る")
                    back_explore_btn = gr.Button("別の視点に戻る")
                with gr.Row():
                    save_btn = gr.Button("履歴に保存", variant="primary")
                    save_before_new = gr.Checkbox(label="保存してから新しく始める", value=True)
                    new_btn = gr.Button("新しい鑑賞を始める")

            with gr.Tab("履歴"):
                history_dropdown = gr.Dropdown(label="保存した鑑賞", choices=[], value=None, interactive=True)
                with gr.Row():
                    history_image = gr.Image(label="サムネイル", type="filepath", interactive=False, height=200)
                    history_md = gr.Markdown("")
                with gr.Row():
                    restore_btn = gr.Button("この履歴を続ける", variant="primary")
                    delete_btn = gr.Button("削除", variant="stop")

    log_box = gr.Textbox(label="Event Log", value=_event_log_text(initial_state), lines=8, interactive=False)

    RENDER_OUTPUTS = [
        state,
        phase_md,
        notice_md,
        object_radio,
        deepen_chat,
        deepen_summary_box,
        candidate_radio,
        candidates_md,
        explore_chat,
        saved_md,
        fallback_group,
        final_box,
        history_dropdown,
        history_md,
        log_box,
        image_input,
        history_image,
        impression_box,
        objects_box,
    ]

    demo.load(_rehydrate_state, inputs=state, outputs=RENDER_OUTPUTS)

    image_input.upload(on_upload, inputs=[image_input, state], outputs=RENDER_OUTPUTS)
    image_input.clear(lambda s: on_upload(None, s), inputs=state, outputs=RENDER_OUTPUTS)
    start_btn.click(on_start_deepen, inputs=[impression_box, objects_box, state], outputs=RENDER_OUTPUTS)

    object_radio.input(on_select_object, inputs=[object_radio, state], outputs=RENDER_OUTPUTS)
    deepen_send.click(on_send_deepen, inputs=[deepen_input, state], outputs=[*RENDER_OUTPUTS, deepen_input])
    deepen_input.submit(on_send_deepen, inputs=[deepen_input, state], outputs=[*RENDER_OUTPUTS, deepen_input])
    complete_btn.click(on_complete_object, inputs=state, outputs=RENDER_OUTPUTS)
    summarize_btn.click(on_summarize_deepen, inputs=state, outputs=RENDER_OUTPUTS)
    to_explore_btn.click(on_start_explore, inputs=state, outputs=RENDER_OUTPUTS)

    candidate_radio.input(on_choose_viewpoint, inputs=[candidate_radio, state], outputs=RENDER_OUTPUTS)
    explore_send.click(on_send_explore, inputs=[explore_input, state], outputs=[*RENDER_OUTPUTS, explore_input])
    explore_input.submit(on_send_explore, inputs=[explore_input, state], outputs=[*RENDER_OUTPUTS, explore_input])
    record_btn.click(on_record_view, inputs=state, outputs=RENDER_OUTPUTS)
    regenerate_btn.click(on_regenerate_candidates, inputs=state, outputs=RENDER_OUTPUTS)
    fallback_proceed_btn.click(on_fallback_proceed, inputs=state, outputs=RENDER_OUTPUTS)
    fallback_back_btn.click(on_fallback_back, inputs=state, outputs=RENDER_OUTPUTS)
    final_btn.click(on_generate_final, inputs=state, outputs=RENDER_OUTPUTS)

    final_box.input(on_edit_final, inputs=[final_box, state], outputs=state)
    regenerate_final_btn.click(on_generate_final, inputs=state, outputs=RENDER_OUTPUTS)
    back_deepen_btn.click(on_back_to_deepen, inputs=state, outputs=RENDER_OUTPUTS)
    back_explore_btn.click(on_back_to_explore, inputs=state, outputs=RENDER_OUTPUTS)
    save_btn.click(on_save_session, inputs=state, outputs=RENDER_OUTPUTS)
    new_btn.click(on_new_session, inputs=[save_before_new, state], outputs=RENDER_OUTPUTS)

    history_dropdown.input(on_history_select, inputs=[history_dropdown, state], outputs=RENDER_OUTPUTS)
    restore_btn.click(on_restore_session, inputs=state, outputs=RENDER_OUTPUTS)
    delete_btn.click(on_delete_session, inputs=state, outputs=RENDER_OUTPUTS)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    demo.launch(server_name="0.0.0.0", server_port=7860, show_error=True)
