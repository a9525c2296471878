from __future__ import annotations

import io
import json
from itertools import count

import pytest
from PIL import Image

import session_history
from artview.ledger import DialogLedger
from artview.models import ImageFile, Message, Phase, SavedView
from artview.orchestrator import SessionState
from artview.thumbnails import thumbnail_data_url
from session_history import (
    FsBlobStore,
    FsRecordRepo,
    MemoryBlobStore,
    MemoryRecordRepo,
    SessionRecord,
    SessionStore,
    apply_record,
    make_stores,
    snapshot_state,
)


def _jpeg_bytes(size=(40, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 10, 10)).save(buf, format="JPEG")
    return buf.getvalue()


def _state() -> SessionState:
    return SessionState(
        phase=Phase.INTERPRET,
        image=ImageFile(name="art.jpg", data=_jpeg_bytes()),
        impression="静かな感じ",
        objects="人、机",
        deepen_dialogs=DialogLedger(
            {"人": [Message("system", "guide", hidden=True), Message("assistant", "どんな形？")]}
        ),
        deepen_summary="深掘り要約",
        explore_dialogs=DialogLedger({"時計": [Message("assistant", "時計は？")]}),
        explore_summary="視点要約",
        saved_views=[SavedView("時計", "丸い", "左上", "針", saved_at=5.0, summary="止まった時間")],
        final_result="生成文",
        edited_final_result="編集文",
    )


@pytest.fixture(params=["memory", "fs"])
def store(request, tmp_path):
    records, blobs = make_stores(request.param, tmp_path)
    ticks = count(1000)
    return SessionStore(records, blobs, max_sessions=20, clock=lambda: float(next(ticks)))


def test_save_and_restore_round_trip(store):
    state = _state()
    record = store.save(snapshot_state(state), thumbnail_data_url(state.image))

    restored = store.restore(record.id)
    target = apply_record(SessionState(), restored.record, restored.image)

    assert restored.record.has_thumb is True
    assert target.phase is Phase.INTERPRET
    assert target.impression == "静かな感じ"
    assert target.deepen_dialogs == state.deepen_dialogs
    assert target.explore_dialogs == state.explore_dialogs
    assert target.saved_views == state.saved_views
    assert (target.final_result, target.edited_final_result) == ("生成文", "編集文")
    assert [c.label for c in target.object_cards] == ["人", "机"]
    assert target.editing_session_id == record.id
    assert target.image.mime == "image/jpeg"
    assert Image.open(io.BytesIO(target.image.data)).format == "JPEG"


def test_resaving_keeps_id_and_creation_time(store):
    state = _state()
    first = store.save(snapshot_state(state))
    state.editing_session_id = first.id
    state.edited_final_result = "書き直し"

    second = store.save(snapshot_state(state))

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.updated_at > first.updated_at
    assert [r.id for r in store.list()] == [first.id]
    assert store.get(first.id).edited_final_result == "書き直し"


def test_list_is_newest_first(store):
    store.save(SessionRecord(id="a"))
    store.save(SessionRecord(id="b"))
    store.save(SessionRecord(id="a"))

    assert [r.id for r in store.list()] == ["a", "b"]


def test_cap_evicts_oldest_record_and_its_thumbnail(store):
    thumb = ImageFile(name="t.jpg", data=_jpeg_bytes()).to_data_url()
    for i in range(21):
        store.save(SessionRecord(id=f"s{i:02d}"), thumb)

    ids = [r.id for r in store.list()]
    assert len(ids) == 20
    assert "s00" not in ids
    assert store.load_thumbnail("s00") is None
    assert store.load_thumbnail("s20") == thumb


def test_missing_thumbnail_restores_without_image(store):
    record = store.save(SessionRecord(id="x", impression="印象"), None)

    restored = store.restore(record.id)

    assert restored.image is None
    assert restored.record.has_thumb is False


def test_invalid_thumbnail_restores_without_image(store):
    store.save(SessionRecord(id="x"))
    store.blobs.put("x", b"not a data url")

    assert store.restore("x").image is None


def test_restore_unknown_id_is_none(store):
    assert store.restore("nope") is None


def test_delete_removes_record_and_blob(store):
    store.save(SessionRecord(id="x"), ImageFile(name="t.jpg", data=b"abc").to_data_url())

    assert store.delete("x") is True
    assert store.get("x") is None
    assert store.load_thumbnail("x") is None
    assert store.delete("x") is False


def test_sweep_orphans_removes_blobs_without_record(store):
    store.save(SessionRecord(id="live"), ImageFile(name="t.jpg", data=b"abc").to_data_url())
    store.blobs.put("ghost", b"data:image/jpeg;base64,YWJj")

    assert store.sweep_orphans() == ["ghost"]
    assert sorted(store.blobs.keys()) == ["live"]


def test_corrupt_record_file_is_quarantined(tmp_path):
    repo = FsRecordRepo(tmp_path)
    repo.path.parent.mkdir(parents=True, exist_ok=True)
    repo.path.write_text("{not json", encoding="utf-8")

    assert repo.load() == []
    assert not repo.path.exists()
    quarantined = list(tmp_path.glob("sessions.json.corrupt-*"))
    assert len(quarantined) == 1
    assert quarantined[0].read_text(encoding="utf-8") == "{not json"


def test_fs_record_file_is_a_json_list(tmp_path):
    store = SessionStore(FsRecordRepo(tmp_path), FsBlobStore(tmp_path))
    store.save(SessionRecord(id="a", impression="静か"))

    data = json.loads((tmp_path / "sessions.json").read_text(encoding="utf-8"))

    assert isinstance(data, list)
    assert data[0]["id"] == "a"
    assert data[0]["impression"] == "静か"


def test_from_dict_tolerates_junk_entries():
    assert SessionRecord.from_dict({"impression": "no id"}) is None
    assert SessionRecord.from_dict("junk") is None

    record = SessionRecord.from_dict(
        {"id": "a", "created_at": "oops", "saved_views": [{"label": ""}, {"label": "窓"}, 3]}
    )

    assert record.created_at == 0.0
    assert [v.label for v in record.saved_views] == ["窓"]


def test_memory_store_does_not_share_live_objects():
    repo = MemoryRecordRepo()
    record = SessionRecord(id="a", impression="before")
    repo.store([record])

    record.impression = "after"

    assert repo.load()[0].impression == "before"


def test_apply_record_marks_deepen_image_as_already_sent():
    state = apply_record(SessionState(), SessionRecord(id="a", deepen_dialogs=_state().deepen_dialogs), None)

    assert state.deepen_image_sent is True
    assert state.candidates == [] and state.excluded_labels == []


def test_apply_record_without_edit_falls_back_to_generated_text():
    state = apply_record(SessionState(), SessionRecord(id="a", final_result="生成文"), None)

    assert state.edited_final_result == "生成文"


def test_title_handles_blank_impression():
    assert SessionRecord(id="a", impression="   ", updated_at=0.0).title.endswith("（印象なし）")


def test_unknown_storage_mode_falls_back_to_filesystem(tmp_path):
    records, blobs = make_stores("s3", tmp_path)

    assert isinstance(records, FsRecordRepo)
    assert isinstance(blobs, FsBlobStore)
    assert isinstance(make_stores("memory")[1], MemoryBlobStore)


def test_record_store_write_failure_is_reported(tmp_path, monkeypatch):
    def boom(path, data):
        raise OSError("disk full")

    monkeypatch.setattr(session_history, "_atomic_write", boom)
    store = SessionStore(FsRecordRepo(tmp_path), FsBlobStore(tmp_path))

    with pytest.raises(session_history.SessionStoreError):
        store.save(SessionRecord(id="a"))
