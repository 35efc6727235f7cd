"""Language model access."""

from copilot_automation.llm.client import ChatCompletionClient, OpenAIChatClient, iter_sse_chunks
from copilot_automation.llm.iteration import (
    IterationResult,
    ToolCallAccumulator,
    run_model_iteration,
)

__all__ = [
    "ChatCompletionClient",
    "IterationResult",
    "OpenAIChatClient",
    "ToolCallAccumulator",
    "iter_sse_chunks",
    "run_model_iteration",
]
