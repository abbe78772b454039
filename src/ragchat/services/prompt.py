"""Prompt construction for grounded and ungrounded answers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ragchat.models import ChatTurn, RetrievalMatch


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    persona: str = "You are a helpful and enthusiastic college assistant chatbot."
    fallback_contact: str = "the college administration"
    passage_max_chars: int = 2000
    citation_prefix: str = "["
    citation_suffix: str = "]"


class PromptBuilder:
    """Builds the message list sent to the completion client.

    Output depends only on the arguments and the config, so identical inputs
    always produce identical messages.
    """

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()

    def assemble(
        self,
        history: Sequence[ChatTurn],
        matches: Sequence[RetrievalMatch],
        question: str,
    ) -> list[ChatTurn]:
        system = self.system_instruction(matches)
        messages = [ChatTurn(role="system", content=system)]
        messages.extend(ChatTurn(role=turn.role, content=turn.content) for turn in history)
        messages.append(ChatTurn(role="user", content=question))
        return messages

    def system_instruction(self, matches: Sequence[RetrievalMatch]) -> str:
        if not matches:
            return (
                f"{self._config.persona}\n"
                "No reference documents matched this question. Answer only from general knowledge you are "
                "confident about. If you do not know the answer, say so plainly and advise the user to contact "
                f"{self._config.fallback_contact}. Never invent facts, policies, dates or sources.\n"
                "Format your response using Markdown where appropriate."
            )
        return (
            f"{self._config.persona}\n"
            "Use the following context to answer the user's question.\n"
            "If the answer is not in the context, say you don't know and advise them to contact "
            f"{self._config.fallback_contact}.\n"
            "ALWAYS cite the sources you used from the context. Format citations as \"[Source: Document Title]\".\n"
            "Format your response using Markdown (bold, lists, etc.) where appropriate.\n\n"
            f"Context:\n{self.build_context(matches)}"
        )

    def build_context(self, matches: Sequence[RetrievalMatch]) -> str:
        blocks = []
        for index, match in enumerate(matches, start=1):
            prefix = f"{self._config.citation_prefix}{index}{self._config.citation_suffix}"
            content = self._cap(match.content)
            blocks.append(f"{prefix} Source: {match.title}\n{content}")
        return "\n\n---\n\n".join(blocks)

    def _cap(self, content: str) -> str:
        limit = self._config.passage_max_chars
        if limit <= 0 or len(content) <= limit:
            return content
        return content[:limit].rstrip() + "..."
