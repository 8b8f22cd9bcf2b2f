"""
Media Orchestrator
==================
Asynchronous multi-provider media generation: submits video jobs to several
third-party back-ends (KIE AI, Sutu, Yunwu, Yijia), polls them to completion,
tracks model health, falls back across equivalent models and survives a
process restart without losing in-flight jobs.

Basic usage:
    from media_orchestrator import (
        Settings, StateManager, ModelHealthTracker, ModelPriorityResolver,
        GenerationSupervisor, build_providers, plan_task_groups,
    )

    settings = Settings.from_env()
    store = StateManager(settings.db_path)
    health = ModelHealthTracker(store=store)
    providers = build_providers(settings)
    resolver = ModelPriorityResolver(health, providers=providers.keys(), store=store)

    groups = plan_task_groups(shots, max_duration=15)
    supervisor = GenerationSupervisor(groups, providers, resolver, store=store)
    asyncio.run(supervisor.generate_all())

After a restart:
    asyncio.run(supervisor.resume_in_flight())
"""

from .models import (
    GenerationConfig, GroupStatus, BatchStatus, ModelCategory, ModelInfo,
    Quality, Shot, Task, TaskGroup, TaskState, TaskStatus, MODEL_CATALOG,
)
from .errors import (
    OrchestratorError, ValidationError, ProviderError,
    GenerationTimeoutError, IllegalTransitionError,
)
from .api_log import ApiCallLog
from .config import Settings
from .health import ModelHealthTracker
from .priority import ModelPriorityResolver
from .planner import TaskGroupPlanner, plan_task_groups
from .prompts import build_story_prompt
from .providers import ProviderAdapter, build_providers
from .state import StateManager
from .hooks import EventType, HookRegistry
from .streaming import GenerationEventBus
from .task_runner import TaskOrchestrator
from .supervisor import GenerationSupervisor

__all__ = [
    "GenerationConfig", "GroupStatus", "BatchStatus", "ModelCategory", "ModelInfo",
    "Quality", "Shot", "Task", "TaskGroup", "TaskState", "TaskStatus", "MODEL_CATALOG",
    "OrchestratorError", "ValidationError", "ProviderError",
    "GenerationTimeoutError", "IllegalTransitionError",
    "ApiCallLog", "Settings", "ModelHealthTracker", "ModelPriorityResolver",
    "TaskGroupPlanner", "plan_task_groups", "build_story_prompt",
    "ProviderAdapter", "build_providers", "StateManager",
    "EventType", "HookRegistry", "GenerationEventBus",
    "TaskOrchestrator", "GenerationSupervisor",
]

__version__ = "0.1.0"
