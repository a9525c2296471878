from __future__ import annotations

import pytest

from artview.models import Candidate
from artview.response_utils import (
    normalize_assistant_text,
    normalize_objects_for_prompt,
    parse_candidates,
    split_objects,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ('```json\n{"question": "どんな形に見えますか？"}\n```', "どんな形に見えますか？"),
        ('{"question": "  色は？ "}', "色は？"),
        ('前置き {"question": "位置は？"} 後書き', "位置は？"),
        ('```\n{"question": "broken", \n```', "broken"),
        ("```\nただの文章です\n```", "ただの文章です"),
        ("  普通の返答  ", "普通の返答"),
        ("", ""),
    ],
)
def test_normalize_assistant_text(raw, expected):
    assert normalize_assistant_text(raw) == expected


@pytest.mark.parametrize(
    "raw",
    [
        "```",
        "``````",
        "```json```",
        "a ``` b ``` c ``` d",
        '{"question": "```"}',
        '```json\n{"question": "x```y"}\n```',
        None,
    ],
)
def test_normalize_never_returns_fence_markers(raw):
    assert "```" not in normalize_assistant_text(raw)


def test_parse_candidates_without_braces_is_none():
    assert parse_candidates("候補はありません") is None
    assert parse_candidates("} reversed {") is None


def test_parse_candidates_malformed_json_is_none():
    assert parse_candidates('{"candidates": [ {"label": ') is None
    assert parse_candidates('{"other": []}') is None


def test_parse_candidates_preserves_order_and_coerces():
    text = (
        "結果です\n"
        '{"candidates": ['
        '{"label": "時計", "element": "丸い", "location": "左上", "evidence": "針が見える"},'
        '{"label": 7, "element": 1.5, "location": "中央", "evidence": true}'
        "]}"
    )

    assert parse_candidates(text) == [
        Candidate("時計", "丸い", "左上", "針が見える"),
        Candidate("7", "1.5", "中央", "True"),
    ]


def test_parse_candidates_drops_incomplete_entries():
    text = (
        '{"candidates": ['
        '{"label": "窓", "element": "四角", "location": "右", "evidence": "枠"},'
        '{"label": "鳥", "element": "", "location": "上", "evidence": "羽"},'
        '{"label": "木", "location": "奥"},'
        '"not a dict"'
        "]}"
    )

    assert [c.label for c in parse_candidates(text)] == ["窓"]


def test_parse_candidates_all_incomplete_is_none():
    assert parse_candidates('{"candidates": [{"label": "窓"}]}') is None


def test_parse_candidates_deidentifies_person_labels():
    text = (
        '{"candidates": ['
        '{"label": "人", "element": "立っている", "location": "手前", "evidence": "輪郭"},'
        '{"label": "人物の影", "element": "長い", "location": "床", "evidence": "暗い"}'
        "]}"
    )

    assert [c.label for c in parse_candidates(text)] == ["人影", "人影の影"]


def test_split_objects_on_delimiters():
    assert split_objects("人、机，椅子, 窓\n 時計 ,, ") == ["人", "机", "椅子", "窓", "時計"]


def test_normalize_objects_softens_identity_questions():
    assert normalize_objects_for_prompt("人物、机") == "人、机"
    assert normalize_objects_for_prompt("この人物は誰ですか") == "人はどんな見え方ですか"
    assert normalize_objects_for_prompt("   ") == ""
