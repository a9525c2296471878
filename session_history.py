"""Saved viewing sessions: small JSON records plus one thumbnail blob each.

Records live in a single recency-ordered JSON list (most recently updated
first) capped at ``MAX_SESSIONS``.  Thumbnails are stored separately, keyed by
the same session id, and are optional: a record whose blob is missing still
restores, only without an image.  Thumbnails are kept as JPEG data URLs so a
restored session can rebuild its image straight from the blob.

Both stores come in a filesystem flavour and an in-memory flavour, picked by
``make_stores`` from ``ARTVIEW_STORAGE``.  The filesystem record file is
written atomically (temp file + ``os.replace``) and a file that fails to
parse is moved aside as ``*.corrupt-<timestamp>`` instead of being silently
overwritten.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from artview import config
from artview.ledger import DialogLedger
from artview.models import ImageFile, ObjectCard, Phase, SavedView
from artview.orchestrator import SessionState
from artview.response_utils import normalize_objects_for_prompt, split_objects

log = logging.getLogger(__name__)


class SessionStoreError(RuntimeError):
    """Record store I/O failed; callers treat persistence as best-effort."""


def _sanitize_id(s: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", s) or "session"


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("wb", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_path = tmp.name
    os.replace(tmp_path, path)


def _atomic_write(path: Path, data: str) -> None:
    _atomic_write_bytes(path, data.encode("utf-8"))


def _float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _str(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class SessionRecord:
    id: str
    created_at: float = 0.0
    updated_at: float = 0.0
    has_thumb: bool = False
    impression: str = ""
    objects: str = ""
    deepen_summary: str = ""
    deepen_dialogs: DialogLedger = field(default_factory=DialogLedger)
    explore_summary: str = ""
    saved_views: List[SavedView] = field(default_factory=list)
    explore_dialogs: DialogLedger = field(default_factory=DialogLedger)
    final_result: str = ""
    edited_final_result: str = ""

    @property
    def title(self) -> str:
        stamp = datetime.fromtimestamp(self.updated_at or self.created_at).strftime("%Y-%m-%d %H:%M")
        head = ((self.impression or "").strip() or "（印象なし）").splitlines()[0][:24]
        return f"{stamp} {head}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "has_thumb": self.has_thumb,
            "impression": self.impression,
            "objects": self.objects,
            "deepen_summary": self.deepen_summary,
            "deepen_dialogs": self.deepen_dialogs.to_dict(),
            "explore_summary": self.explore_summary,
            "saved_views": [v.to_dict() for v in self.saved_views],
            "explore_dialogs": self.explore_dialogs.to_dict(),
            "final_result": self.final_result,
            "edited_final_result": self.edited_final_result,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["SessionRecord"]:
        if not isinstance(data, dict):
            return None
        record_id = data.get("id")
        if not record_id or not isinstance(record_id, str):
            return None
        raw_views = data.get("saved_views")
        views = [SavedView.from_dict(v) for v in raw_views if isinstance(v, dict)] if isinstance(raw_views, list) else []
        return cls(
            id=record_id,
            created_at=_float(data.get("created_at")),
            updated_at=_float(data.get("updated_at")),
            has_thumb=bool(data.get("has_thumb", False)),
            impression=_str(data.get("impression")),
            objects=_str(data.get("objects")),
            deepen_summary=_str(data.get("deepen_summary")),
            deepen_dialogs=DialogLedger.from_dict(data.get("deepen_dialogs")),
            explore_summary=_str(data.get("explore_summary")),
            saved_views=[v for v in views if v.label],
            explore_dialogs=DialogLedger.from_dict(data.get("explore_dialogs")),
            final_result=_str(data.get("final_result")),
            edited_final_result=_str(data.get("edited_final_result")),
        )


# ----------------------------------------------------------------------
# Record repositories
# ----------------------------------------------------------------------
class RecordRepo(ABC):
    @abstractmethod
    def load(self) -> List[SessionRecord]:
        ...

    @abstractmethod
    def store(self, records: List[SessionRecord]) -> None:
        ...


class MemoryRecordRepo(RecordRepo):
    def __init__(self) -> None:
        self._records: List[Dict[str, Any]] = []

    def load(self) -> List[SessionRecord]:
        return [r for r in (SessionRecord.from_dict(d) for d in self._records) if r is not None]

    def store(self, records: List[SessionRecord]) -> None:
        # Round-trip through dicts so callers never share live objects with the store.
        self._records = json.loads(json.dumps([r.to_dict() for r in records], ensure_ascii=False))


class FsRecordRepo(RecordRepo):
    """All records in one ``sessions.json`` list under ``base_dir``."""

    def __init__(self, base_dir: Optional[Path] = None, *, logger: Optional[logging.Logger] = None):
        resolved = base_dir or config.DATA_DIR
        self.base_dir = Path(resolved).expanduser().resolve()
        self.path = self.base_dir / "sessions.json"
        self._logger = logger or log

    def _quarantine_corrupt(self, exc: Exception) -> None:
        ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        quarantined = self.path.with_suffix(self.path.suffix + f".corrupt-{ts}")
        try:
            shutil.move(str(self.path), str(quarantined))
            self._logger.warning("Quarantined corrupt session file %s: %s", self.path, exc)
        except OSError as move_exc:
            self._logger.error("Failed to quarantine %s: %s", self.path, move_exc)

    def load(self) -> List[SessionRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            self._quarantine_corrupt(exc)
            return []
        except OSError as exc:
            raise SessionStoreError(f"Could not read {self.path}: {exc}") from exc
        if not isinstance(raw, list):
            self._quarantine_corrupt(ValueError("expected a JSON list"))
            return []
        return [r for r in (SessionRecord.from_dict(item) for item in raw) if r is not None]

    def store(self, records: List[SessionRecord]) -> None:
        payload = json.dumps([r.to_dict() for r in records], ensure_ascii=False, indent=2)
        try:
            _atomic_write(self.path, payload)
        except OSError as exc:
            raise SessionStoreError(f"Could not write {self.path}: {exc}") from exc


# ----------------------------------------------------------------------
# Blob stores
# ----------------------------------------------------------------------
class BlobStore(ABC):
    """Binary thumbnails keyed by session id; a missing key reads as ``None``."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...


class MemoryBlobStore(BlobStore):
    def __init__(self) -> None:
        self._blobs: Dict[str, bytes] = {}

    def put(self, key: str, data: bytes) -> None:
        self._blobs[key] = bytes(data)

    def get(self, key: str) -> Optional[bytes]:
        return self._blobs.get(key)

    def delete(self, key: str) -> None:
        self._blobs.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._blobs)


class FsBlobStore(BlobStore):
    """One ``<id>.thumb`` file (a JPEG data URL) per session under ``base_dir/thumbs``."""

    suffix = ".thumb"

    def __init__(self, base_dir: Optional[Path] = None):
        resolved = base_dir or config.DATA_DIR
        self.base_dir = Path(resolved).expanduser().resolve() / "thumbs"

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{_sanitize_id(key)}{self.suffix}"

    def put(self, key: str, data: bytes) -> None:
        _atomic_write_bytes(self._path(key), data)

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink()
        except FileNotFoundError:
            pass

    def keys(self) -> List[str]:
        if not self.base_dir.exists():
            return []
        return [p.name[: -len(self.suffix)] for p in self.base_dir.glob(f"*{self.suffix}")]


def make_stores(
    storage: Optional[str] = None,
    base_dir: Optional[Path] = None,
) -> Tuple[RecordRepo, BlobStore]:
    mode = (storage or config.STORAGE or "fs").lower()
    if mode == "memory":
        return MemoryRecordRepo(), MemoryBlobStore()
    if mode != "fs":
        log.warning("Unknown ARTVIEW_STORAGE=%r; using filesystem storage", mode)
    return FsRecordRepo(base_dir), FsBlobStore(base_dir)


# ----------------------------------------------------------------------
# Session store
# ----------------------------------------------------------------------
@dataclass
class RestoredSession:
    record: SessionRecord
    image: Optional[ImageFile] = None


class SessionStore:
    def __init__(
        self,
        records: RecordRepo,
        blobs: BlobStore,
        max_sessions: Optional[int] = None,
        *,
        clock=time.time,
    ) -> None:
        self.records = records
        self.blobs = blobs
        self.max_sessions = max(1, max_sessions or config.MAX_SESSIONS)
        self.clock = clock
        self._lock = threading.Lock()

    def list(self) -> List[SessionRecord]:
        return self.records.load()[: self.max_sessions]

    def get(self, session_id: str) -> Optional[SessionRecord]:
        for record in self.records.load():
            if record.id == session_id:
                return record
        return None

    def save(self, record: SessionRecord, thumbnail: Optional[str] = None) -> SessionRecord:
        """Upsert by id, newest first, evicting (record and blob) beyond the cap.

        ``thumbnail`` is a ``data:image/jpeg;base64,...`` URL; it is kept as-is in the blob store.
        """

        with self._lock:
            existing = self.records.load()
            previous = next((r for r in existing if r.id == record.id), None)
            now = self.clock()
            record.created_at = previous.created_at if previous and previous.created_at else (record.created_at or now)
            record.updated_at = now

            if thumbnail:
                try:
                    self.blobs.put(record.id, thumbnail.encode("ascii"))
                    record.has_thumb = True
                except OSError as exc:
                    log.warning("Could not store thumbnail for %s: %s", record.id, exc)
                    record.has_thumb = bool(previous and previous.has_thumb)
            elif previous is not None:
                record.has_thumb = record.has_thumb or previous.has_thumb

            ordered = [record, *(r for r in existing if r.id != record.id)]
            kept, evicted = ordered[: self.max_sessions], ordered[self.max_sessions :]
            self.records.store(kept)

        for old in evicted:
            self._delete_blob(old.id)
            log.info("Evicted session %s beyond cap of %d", old.id, self.max_sessions)
        log.info("Saved session %s (%d stored)", record.id, len(kept))
        return record

    def _delete_blob(self, session_id: str) -> None:
        try:
            self.blobs.delete(session_id)
        except OSError as exc:
            log.warning("Could not delete thumbnail for %s: %s", session_id, exc)

    def load_thumbnail(self, session_id: str) -> Optional[str]:
        try:
            data = self.blobs.get(session_id)
        except OSError as exc:
            log.warning("Could not read thumbnail for %s: %s", session_id, exc)
            return None
        if not data:
            return None
        return data.decode("ascii", errors="replace")

    def restore(self, session_id: str) -> Optional[RestoredSession]:
        record = self.get(session_id)
        if record is None:
            return None
        image = None
        data_url = self.load_thumbnail(session_id)
        if data_url:
            image = ImageFile.from_data_url(data_url)
            if image is None:
                log.warning("Thumbnail for %s is not a valid data URL; restoring without image", session_id)
        return RestoredSession(record=record, image=image)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            existing = self.records.load()
            remaining = [r for r in existing if r.id != session_id]
            removed = len(remaining) != len(existing)
            if removed:
                self.records.store(remaining)
        self._delete_blob(session_id)
        return removed

    def sweep_orphans(self) -> List[str]:
        """Delete blobs whose record no longer exists; returns the swept ids."""

        live = {r.id for r in self.records.load()}
        swept = []
        for key in self.blobs.keys():
            if key not in live:
                self._delete_blob(key)
                swept.append(key)
        if swept:
            log.info("Swept %d orphaned thumbnail(s)", len(swept))
        return swept


# ----------------------------------------------------------------------
# SessionState <-> SessionRecord
# ----------------------------------------------------------------------
def _copy_ledger(ledger: DialogLedger) -> DialogLedger:
    return DialogLedger.from_dict(ledger.to_dict())


def snapshot_state(state: SessionState, session_id: Optional[str] = None) -> SessionRecord:
    """Freeze the live state into a record; reuses the editing id when there is one."""

    return SessionRecord(
        id=session_id or state.editing_session_id or uuid.uuid4().hex,
        has_thumb=False,
        impression=state.impression,
        objects=state.objects,
        deepen_summary=state.deepen_summary,
        deepen_dialogs=_copy_ledger(state.deepen_dialogs),
        explore_summary=state.explore_summary,
        saved_views=list(state.saved_views),
        explore_dialogs=_copy_ledger(state.explore_dialogs),
        final_result=state.final_result,
        edited_final_result=state.edited_final_result,
    )


def apply_record(state: SessionState, record: SessionRecord, image: Optional[ImageFile]) -> SessionState:
    """Load ``record`` into ``state`` ready to keep editing in the Interpret phase."""

    state.phase = Phase.INTERPRET
    state.busy = None
    state.image = image
    state.impression = record.impression
    state.objects = record.objects
    labels = split_objects(normalize_objects_for_prompt(record.objects))
    state.object_cards = [ObjectCard(label) for label in dict.fromkeys(labels)]
    state.current_object = None
    state.deepen_dialogs = _copy_ledger(record.deepen_dialogs)
    state.deepen_summary = record.deepen_summary
    state.deepen_image_sent = bool(len(state.deepen_dialogs))
    state.candidates = []
    state.excluded_labels = []
    state.chosen_label = None
    state.explore_dialogs = _copy_ledger(record.explore_dialogs)
    state.explore_summary = record.explore_summary
    state.saved_views = list(record.saved_views)
    state.saving_labels = set()
    state.final_result = record.final_result
    state.edited_final_result = record.edited_final_result or record.final_result
    state.fallback_pending = False
    state.editing_session_id = record.id
    return state


__all__ = [
    "BlobStore",
    "FsBlobStore",
    "FsRecordRepo",
    "MemoryBlobStore",
    "MemoryRecordRepo",
    "RecordRepo",
    "RestoredSession",
    "SessionRecord",
    "SessionStore",
    "SessionStoreError",
    "apply_record",
    "make_stores",
    "snapshot_state",
]
