"""Wire storage, tools, model client and runner from settings."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from copilot_automation.automation.cycle import AutomationCycle
from copilot_automation.config.settings import Settings
from copilot_automation.instructions.matcher import InstructionMatcher
from copilot_automation.instructions.service import InstructionService
from copilot_automation.integrations.calendar import CalendarClient
from copilot_automation.integrations.gmail import GmailClient
from copilot_automation.integrations.http import StaticTokenProvider, TokenProvider
from copilot_automation.integrations.hubspot import HubspotClient
from copilot_automation.llm.client import ChatCompletionClient, OpenAIChatClient
from copilot_automation.retrieval.context import ContextRetriever, SemanticSearcher
from copilot_automation.retrieval.knowledge import KnowledgeSearch
from copilot_automation.runner.task_runner import TaskRunner
from copilot_automation.storage.base import AutomationStorage
from copilot_automation.storage.postgres import PostgresAutomationStorage
from copilot_automation.sync.base import SyncAdapter
from copilot_automation.sync.ingest import RecordIngestor
from copilot_automation.tasks.service import TaskService
from copilot_automation.tools.gateway import ToolExecutor
from copilot_automation.tools.handlers import ToolDependencies
from copilot_automation.tools.registry import ToolRegistry, build_registry, tool_definitions


@dataclass
class AutomationRuntime:
    settings: Settings
    storage: AutomationStorage
    matcher: InstructionMatcher
    instructions: InstructionService
    tasks: TaskService
    ingestor: RecordIngestor
    registry: ToolRegistry
    executor: ToolExecutor
    runner: TaskRunner
    cycle: AutomationCycle
    tool_definitions: list[dict[str, Any]] = field(default_factory=list)


def build_runtime(
    settings: Settings,
    *,
    storage: AutomationStorage | None = None,
    chat_client: ChatCompletionClient | None = None,
    token_provider: TokenProvider | None = None,
    adapters: Mapping[str, SyncAdapter] | None = None,
    searcher: SemanticSearcher | None = None,
) -> AutomationRuntime:
    if storage is None:
        storage = PostgresAutomationStorage(settings.database_url)
        storage.migrate()

    matcher = InstructionMatcher(storage)
    instructions = InstructionService(storage)
    tasks = TaskService(storage)
    ingestor = RecordIngestor(storage, matcher)
    retriever = ContextRetriever(storage, searcher=searcher)

    if token_provider is None and settings.static_integration_tokens():
        token_provider = StaticTokenProvider(settings.static_integration_tokens())
    clients: dict[str, Any] = {}
    if token_provider is not None:
        clients = {
            "gmail": GmailClient(token_provider, timeout_s=settings.tool_timeout_s),
            "calendar": CalendarClient(token_provider, timeout_s=settings.tool_timeout_s),
            "hubspot": HubspotClient(token_provider, timeout_s=settings.tool_timeout_s),
        }

    registry = build_registry(
        ToolDependencies(
            storage=storage,
            tasks=tasks,
            instructions=instructions,
            knowledge=KnowledgeSearch(storage, retriever),
            ingestor=ingestor,
            default_time_zone=settings.default_time_zone,
            **clients,
        )
    )
    executor = ToolExecutor(registry, tool_timeout_s=settings.tool_timeout_s)
    definitions = tool_definitions(registry)

    client = chat_client or OpenAIChatClient(
        api_key=settings.resolved_openai_api_key(),
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_s=settings.llm_timeout_s,
        temperature=settings.llm_temperature,
    )
    stale_after = (
        timedelta(seconds=settings.stale_task_timeout_s)
        if settings.stale_task_timeout_s > 0
        else None
    )
    runner = TaskRunner(
        tasks,
        retriever,
        client=client,
        executor=executor,
        tools=definitions,
        max_iterations=settings.max_agent_iterations,
        summary_max_chars=settings.summary_max_chars,
        retrieval_limit=settings.retrieval_limit,
        default_time_zone=settings.default_time_zone,
        stale_after=stale_after,
    )
    cycle = AutomationCycle(
        storage, runner, adapters=adapters, task_batch_size=settings.task_batch_size
    )
    return AutomationRuntime(
        settings=settings,
        storage=storage,
        matcher=matcher,
        instructions=instructions,
        tasks=tasks,
        ingestor=ingestor,
        registry=registry,
        executor=executor,
        runner=runner,
        cycle=cycle,
        tool_definitions=definitions,
    )
