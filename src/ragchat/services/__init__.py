"""Service layer orchestrations for ragchat."""

from .chat import ChatService, RequestTrace, Stage
from .generation import CompletionClient, GeminiCompletionClient, GenerationConfig, TemplateCompletionClient
from .prompt import PromptBuilder, PromptBuilderConfig

__all__ = [
    "ChatService",
    "CompletionClient",
    "GeminiCompletionClient",
    "GenerationConfig",
    "PromptBuilder",
    "PromptBuilderConfig",
    "RequestTrace",
    "Stage",
    "TemplateCompletionClient",
]
