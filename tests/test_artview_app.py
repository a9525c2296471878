import importlib
import io
import json
from typing import Any, List

from PIL import Image

from artview.model_engine import TransportError

NOTICE = 2
DEEPEN_CHAT = 4
CANDIDATE_RADIO = 6
EXPLORE_CHAT = 8
FALLBACK = 10
FINAL_BOX = 11
HISTORY = 12
LOG = 14
IMAGE = 15
IMPRESSION = 17


class _ScriptedTransport:
    def __init__(self, replies: List[Any]):
        self.replies = list(replies)
        self.calls: List[Any] = []

    def send_chat(self, messages, image=None):
        self.calls.append((list(messages), image))
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def close(self):
        pass


def _load_app(tmp_path, monkeypatch, *replies):
    monkeypatch.setenv("ARTVIEW_STORAGE", "memory")
    monkeypatch.setenv("ARTVIEW_DATA_DIR", str(tmp_path / "data"))

    module = importlib.import_module("artview_app")
    artview_app = importlib.reload(module)

    transport = _ScriptedTransport(list(replies))
    artview_app.configure_dependencies(
        artview_app.build_dependencies(storage="memory", transport_factory=lambda: transport)
    )
    return artview_app, transport


def _upload(tmp_path) -> str:
    path = tmp_path / "art.png"
    buf = io.BytesIO()
    Image.new("RGB", (64, 48), (10, 120, 200)).save(buf, format="PNG")
    path.write_bytes(buf.getvalue())
    return str(path)


def _candidates(*labels):
    return json.dumps(
        {"candidates": [{"label": l, "element": "e", "location": "右", "evidence": "見える"} for l in labels]},
        ensure_ascii=False,
    )


def _started(app, tmp_path):
    state = app._initial_state()
    app.on_upload(_upload(tmp_path), state)
    app.on_start_deepen("静かな感じ", "人、机", state)
    return state


def test_start_deepen_without_image_shows_notice(tmp_path, monkeypatch):
    app, transport = _load_app(tmp_path, monkeypatch)
    state = app._initial_state()

    out = app.on_start_deepen("静かな感じ", "人、机", state)

    assert "⚠️" in out[NOTICE]
    assert transport.calls == []
    assert "Start deepen blocked" in out[LOG]


def test_deepen_send_shows_pending_bubble_then_reply(tmp_path, monkeypatch):
    app, transport = _load_app(tmp_path, monkeypatch, "どんな形ですか？", "その丸さは静けさとどう関わりますか？")
    state = _started(app, tmp_path)
    app.on_select_object("人", state)

    updates = list(app.on_send_deepen("丸い形です", state))

    assert len(updates) == 2
    pending_chat = updates[0][DEEPEN_CHAT]
    assert pending_chat[-2] == {"role": "user", "content": "丸い形です"}
    assert "pending-response-bubble" in pending_chat[-1]["content"]
    final_chat = updates[-1][DEEPEN_CHAT]
    assert final_chat[-1]["content"] == "その丸さは静けさとどう関わりますか？"
    assert all("pending-response-bubble" not in row["content"] for row in final_chat)
    assert updates[-1][-1]["value"] == ""
    assert transport.calls[0][1] is not None


def test_failed_send_keeps_typed_text_and_reports(tmp_path, monkeypatch):
    app, _ = _load_app(tmp_path, monkeypatch, "問い", TransportError("down"))
    state = _started(app, tmp_path)
    app.on_select_object("人", state)

    final = list(app.on_send_deepen("丸い形です", state))[-1]

    assert "通信に失敗" in final[NOTICE]
    assert final[-1]["value"] == "丸い形です"
    assert [row["content"] for row in final[DEEPEN_CHAT]] == ["問い"]


def test_empty_candidates_reveal_fallback_choice(tmp_path, monkeypatch):
    app, _ = _load_app(tmp_path, monkeypatch, "問い", "要約", "見つかりません", "新しい要約", "最終文")
    state = _started(app, tmp_path)
    app.on_select_object("人", state)
    app.on_summarize_deepen(state)

    out = app.on_start_explore(state)
    assert out[FALLBACK]["visible"] is True

    out = app.on_fallback_proceed(state)
    assert out[FALLBACK]["visible"] is False
    assert out[FINAL_BOX]["value"] == "最終文"


def test_full_flow_saves_and_restores_session(tmp_path, monkeypatch):
    app, _ = _load_app(
        tmp_path,
        monkeypatch,
        "問い",
        "深掘り要約",
        _candidates("時計"),
        "時計の問い",
        "時計の要約",
        "新しい深掘り要約",
        "視点のまとめ",
        "最終文",
    )
    state = _started(app, tmp_path)
    app.on_select_object("人", state)
    app.on_summarize_deepen(state)
    out = app.on_start_explore(state)
    assert out[CANDIDATE_RADIO]["choices"] == [("時計", "時計")]

    out = app.on_choose_viewpoint("時計", state)
    assert out[EXPLORE_CHAT][-1]["content"] == "時計の問い"
    app.on_record_view(state)
    app.on_generate_final(state)
    app.on_edit_final("自分の言葉", state)

    out = app.on_save_session(state)
    session_id = state["preview_session_id"]
    assert "保存" in out[NOTICE]
    assert out[HISTORY]["choices"][0][1] == session_id

    out = app.on_new_session(False, state)
    assert out[IMPRESSION]["value"] == ""
    assert state["session"].editing_session_id is None

    app.on_history_select(session_id, state)
    out = app.on_restore_session(state)

    session = state["session"]
    assert session.editing_session_id == session_id
    assert session.edited_final_result == "自分の言葉"
    assert session.final_result == "最終文"
    assert [v.label for v in session.saved_views] == ["時計"]
    assert out[IMPRESSION]["value"] == "静かな感じ"
    assert out[IMAGE]["value"] is not None


def test_edit_final_updates_only_edited_text(tmp_path, monkeypatch):
    app, _ = _load_app(tmp_path, monkeypatch, "最終文")
    state = _started(app, tmp_path)
    app.on_generate_final(state)

    app.on_edit_final("書き直し", state)

    assert state["session"].final_result == "最終文"
    assert state["session"].edited_final_result == "書き直し"


def test_delete_session_clears_preview(tmp_path, monkeypatch):
    app, _ = _load_app(tmp_path, monkeypatch)
    state = _started(app, tmp_path)
    app.on_save_session(state)
    session_id = state["preview_session_id"]

    out = app.on_delete_session(state)

    assert state["preview_session_id"] is None
    assert state["session"].editing_session_id is None
    assert out[HISTORY]["choices"] == []
    assert app.session_store.get(session_id) is None


def test_event_log_is_capped(tmp_path, monkeypatch):
    app, _ = _load_app(tmp_path, monkeypatch)
    state = app._initial_state()

    for i in range(250):
        app._append_event_log(state, f"entry {i}")

    assert len(state["event_log"]) == 200
    assert app._event_log_text(state).count("\n") == 79


def test_start_deepen_from_later_phase_is_blocked(tmp_path, monkeypatch):
    app, transport = _load_app(tmp_path, monkeypatch, "問い")
    state = _started(app, tmp_path)
    app.on_select_object("人", state)
    state["session"].editing_session_id = "old"

    out = app.on_start_deepen("別の印象", "窓", state)

    session = state["session"]
    assert "⚠️" in out[NOTICE]
    assert session.impression == "静かな感じ"
    assert session.deepen_dialogs.has("人")
    assert session.editing_session_id == "old"
    assert len(transport.calls) == 1
