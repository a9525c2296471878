import pytest

from artview.ledger import DialogLedger, visible_messages
from artview.models import Message


def _kickoff(label: str):
    return [Message("system", "guide", hidden=True), Message("user", f"about {label}", hidden=True)]


def test_open_creates_once_then_resumes():
    ledger = DialogLedger()

    first, created = ledger.open("机", _kickoff("机"))
    again, created_again = ledger.open("机", [Message("user", "ignored")])

    assert created is True
    assert created_again is False
    assert first == again == _kickoff("机")


def test_set_refuses_empty_sequence():
    ledger = DialogLedger()

    with pytest.raises(ValueError):
        ledger.set("机", [])
    assert "机" not in ledger


def test_append_requires_existing_key():
    ledger = DialogLedger()

    with pytest.raises(KeyError):
        ledger.append("missing", Message("user", "hi"))


def test_replace_last_only_replaces_trailing_assistant():
    ledger = DialogLedger({"人": [Message("user", "q"), Message("assistant", "old")]})

    ledger.replace_last("人", Message("assistant", "new"))
    assert [m.content for m in ledger.get("人")] == ["q", "new"]

    ledger.append("人", Message("user", "more"))
    ledger.replace_last("人", Message("assistant", "answer"))
    assert [m.content for m in ledger.get("人")] == ["q", "new", "more", "answer"]


def test_get_returns_a_copy():
    ledger = DialogLedger({"人": [Message("user", "q")]})

    ledger.get("人").append(Message("assistant", "sneaky"))

    assert len(ledger.get("人")) == 1


def test_all_messages_follows_key_insertion_order():
    ledger = DialogLedger()
    ledger.set("b", [Message("user", "b1")])
    ledger.set("a", [Message("user", "a1"), Message("assistant", "a2")])

    assert [m.content for m in ledger.all_messages()] == ["b1", "a1", "a2"]


def test_dict_round_trip_keeps_hidden_flags_and_drops_junk():
    ledger = DialogLedger({"人": _kickoff("人") + [Message("assistant", "reply")]})

    data = ledger.to_dict()
    data["broken"] = [{"role": "narrator", "content": "x"}]
    data["empty"] = []
    restored = DialogLedger.from_dict(data)

    assert restored == ledger
    assert restored.get("人")[0].hidden is True
    assert restored.keys() == ["人"]


def test_visible_messages_hides_system_and_hidden_turns():
    messages = _kickoff("人") + [Message("assistant", "reply"), Message("user", "typed")]

    assert [m.content for m in visible_messages(messages)] == ["reply", "typed"]
