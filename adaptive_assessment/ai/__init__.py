"""
AI collaborators: the text-completion contract and its prompts.
"""

from adaptive_assessment.ai.completion import (
    CompletionError,
    CompletionRequest,
    OpenAICompletionClient,
    TextCompletionClient,
    complete_json,
    extract_json,
    get_completion_client,
)

__all__ = [
    "CompletionError",
    "CompletionRequest",
    "OpenAICompletionClient",
    "TextCompletionClient",
    "complete_json",
    "extract_json",
    "get_completion_client",
]
