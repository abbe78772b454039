from __future__ import annotations

from conftest import match
from ragchat.models import ChatTurn, RetrievalMatch
from ragchat.services.prompt import PromptBuilder, PromptBuilderConfig

HISTORY = [
    ChatTurn(role="user", content="When does the library open?"),
    ChatTurn(role="assistant", content="At 8am on weekdays."),
]


def test_grounded_prompt_lists_passages_and_citation_rule():
    builder = PromptBuilder()
    messages = builder.assemble(HISTORY, [match("d1", 0.9, "Library Hours"), match("d2", 0.7, "Fees")], "And weekends?")
    system = messages[0]
    assert system.role == "system"
    assert "[1] Source: Library Hours\nContent of d1" in system.content
    assert "[2] Source: Fees\nContent of d2" in system.content
    assert "[Source: Document Title]" in system.content
    assert "Context:" in system.content


def test_ungrounded_prompt_tells_model_to_admit_ignorance():
    builder = PromptBuilder(PromptBuilderConfig(fallback_contact="the registrar"))
    system = builder.assemble([], [], "What is the wifi password?")[0].content
    assert "Context:" not in system
    assert "do not know" in system
    assert "the registrar" in system
    assert "Never invent" in system


def test_history_is_copied_in_order_and_question_is_last():
    messages = PromptBuilder().assemble(HISTORY, [], "And weekends?")
    assert [m.role for m in messages] == ["system", "user", "assistant", "user"]
    assert messages[1:3] == HISTORY
    assert messages[-1] == ChatTurn(role="user", content="And weekends?")


def test_assembly_is_deterministic():
    matches = [match("d1", 0.9), match("d2", 0.6)]
    first = PromptBuilder().assemble(HISTORY, matches, "Q?")
    second = PromptBuilder().assemble(list(HISTORY), list(matches), "Q?")
    assert first == second
    assert "".join(m.content for m in first).encode() == "".join(m.content for m in second).encode()


def test_each_passage_is_capped():
    long_match = RetrievalMatch(document_id="big", title="Handbook", content="x" * 500, similarity=0.8)
    short_match = RetrievalMatch(document_id="small", title="Memo", content="short text", similarity=0.7)
    builder = PromptBuilder(PromptBuilderConfig(passage_max_chars=100))
    system = builder.system_instruction([long_match, short_match])
    assert "x" * 100 + "..." in system
    assert "x" * 101 not in system
    assert "short text" in system


def test_input_history_is_not_mutated():
    history = list(HISTORY)
    PromptBuilder().assemble(history, [match("d1", 0.9)], "Q?")
    assert history == HISTORY
