from artview.models import Candidate, Message, Phase, SavedView
from artview.prompts import (
    PHASE_CONTRACTS,
    TRANSCRIPT_EMPTY,
    candidate_request,
    deepen_kickoff,
    explore_kickoff,
    final_synthesis,
    saved_views_summary,
    summarize_transcript,
)


def test_kickoffs_are_hidden_system_then_hidden_user():
    cand = Candidate("時計", "丸い", "左上", "針")
    for messages in (deepen_kickoff("静かな感じ", "机"), explore_kickoff("静かな感じ", "要約", cand)):
        assert [(m.role, m.hidden) for m in messages] == [("system", True), ("user", True)]

    assert "机" in deepen_kickoff("静かな感じ", "机")[1].content
    assert "時計" in explore_kickoff("静かな感じ", "要約", cand)[1].content


def test_summarize_transcript_drops_system_but_keeps_hidden_user_turns():
    messages = [
        Message("system", "SECRET-INSTRUCTION", hidden=True),
        Message("user", "kickoff-user", hidden=True),
        Message("assistant", "question"),
        Message("user", "answer"),
    ]

    system, user = summarize_transcript(messages)

    assert (system.role, user.role) == ("system", "user")
    assert "SECRET-INSTRUCTION" not in user.content
    assert "User: kickoff-user" in user.content
    assert "Assistant: question" in user.content
    assert user.content.index("kickoff-user") < user.content.index("answer")


def test_summarize_empty_transcript_uses_placeholder():
    assert summarize_transcript([])[1].content == TRANSCRIPT_EMPTY


def test_candidate_request_lists_exclusions_and_saved_views():
    saved = [SavedView("窓", "四角", "右", "枠", saved_at=1.0, summary="明るい")]

    system, user = candidate_request("人、机", "要約", ["時計", "鳥"], saved)

    assert '"candidates"' in system.content
    assert "- 時計" in user.content and "- 鳥" in user.content
    assert "窓" in user.content and "明るい" in user.content
    assert "人、机" in user.content


def test_saved_views_summary_lists_newest_first():
    views = [
        SavedView("古い", "e", "l", "ev", saved_at=1.0, summary="a"),
        SavedView("新しい", "e", "l", "ev", saved_at=5.0, summary="b"),
    ]

    body = saved_views_summary(views)[1].content

    assert body.index("新しい") < body.index("古い")


def test_final_synthesis_carries_all_inputs():
    _, user = final_synthesis("静か", "人、机", "深掘り要約", "視点要約")

    for part in ("静か", "人、机", "深掘り要約", "視点要約"):
        assert part in user.content


def test_phase_contracts_cover_dialogue_phases():
    assert PHASE_CONTRACTS[Phase.DEEPEN].kickoff is deepen_kickoff
    assert PHASE_CONTRACTS[Phase.DEEPEN].candidates is None
    assert PHASE_CONTRACTS[Phase.EXPLORE].candidates is candidate_request
    assert PHASE_CONTRACTS[Phase.EXPLORE].summarize is summarize_transcript
