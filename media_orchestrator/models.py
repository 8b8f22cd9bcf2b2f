"""
Core Models & Types
===================
Enums, dataclasses and the built-in model catalog shared by every component.

Timestamps are Unix epoch seconds (time.time()) so they survive a process
restart and can be compared across process lifetimes.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


# ─────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────

class ModelCategory(str, Enum):
    IMAGE = "image"
    TEXT = "text"
    AUDIO = "audio"
    VIDEO = "video"


class Quality(str, Enum):
    STANDARD = "standard"
    PRO = "pro"
    HD = "hd"


class TaskState(str, Enum):
    """Normalized provider status. Every provider vocabulary maps onto these four."""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.ERROR)


class GroupStatus(str, Enum):
    IDLE = "idle"
    PROMPT_READY = "prompt_ready"
    IMAGE_FUSED = "image_fused"
    UPLOADING = "uploading"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({GroupStatus.UPLOADING, GroupStatus.QUEUED, GroupStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({GroupStatus.COMPLETED, GroupStatus.FAILED})


class BatchStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ─────────────────────────────────────────────
# Provider & model descriptors
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class ProviderCapabilities:
    image_reference: bool = True
    durations: tuple[str, ...] = ("10", "15")
    aspect_ratios: tuple[str, ...] = ("16:9", "9:16")


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    display_name: str
    capabilities: ProviderCapabilities


@dataclass(frozen=True)
class ModelInfo:
    """
    A model as catalog data. `identifier` is the provider-side model name;
    `hd_identifier` is used instead when the request asks for pro/hd quality.
    """
    id: str
    category: ModelCategory
    provider: str
    identifier: str
    priority: int
    display_name: str = ""
    hd_identifier: Optional[str] = None

    def wire_name(self, config: "GenerationConfig") -> str:
        if config.hd and self.hd_identifier:
            return self.hd_identifier
        return self.identifier


@dataclass
class GenerationConfig:
    aspect_ratio: str = "16:9"
    duration: str = "15"
    quality: Quality = Quality.STANDARD

    @property
    def hd(self) -> bool:
        return self.quality != Quality.STANDARD

    @property
    def landscape(self) -> bool:
        return self.aspect_ratio != "9:16"


# ─────────────────────────────────────────────
# Model catalog (default order = priority)
# ─────────────────────────────────────────────

MODEL_CATALOG: list[ModelInfo] = [
    ModelInfo("sora-2-kie", ModelCategory.VIDEO, "kie", "sora-2", 1,
              "Sora 2 (KIE AI)", hd_identifier="sora-2-pro"),
    ModelInfo("sora-2-yunwu", ModelCategory.VIDEO, "yunwu", "sora-2-all", 2,
              "Sora 2 (Yunwu)", hd_identifier="sora-2-pro-all"),
    ModelInfo("sora-2-sutu", ModelCategory.VIDEO, "sutu", "sora2-new", 3,
              "Sora 2 (Sutu)", hd_identifier="sora2-pro"),
    ModelInfo("sora-2-yijiapi", ModelCategory.VIDEO, "yijiapi", "sora-2-yijia", 4,
              "Sora 2 (Yijia)", hd_identifier="sora-2-pro-25s-yijia"),
    ModelInfo("mock-video", ModelCategory.VIDEO, "mock", "mock-video", 99,
              "Mock video (dry run)"),
    ModelInfo("gemini-3-pro-image-preview", ModelCategory.IMAGE, "google",
              "gemini-3-pro-image-preview", 1, "Gemini 3 Pro Image"),
    ModelInfo("gemini-2.5-flash-image", ModelCategory.IMAGE, "google",
              "gemini-2.5-flash-image", 2, "Gemini 2.5 Flash Image"),
    ModelInfo("gemini-2.5-pro", ModelCategory.TEXT, "google", "gemini-2.5-pro", 1,
              "Gemini 2.5 Pro"),
    ModelInfo("gemini-2.5-flash", ModelCategory.TEXT, "google", "gemini-2.5-flash", 2,
              "Gemini 2.5 Flash"),
    ModelInfo("gemini-2.5-flash-preview-tts", ModelCategory.AUDIO, "google",
              "gemini-2.5-flash-preview-tts", 1, "Gemini 2.5 Flash TTS"),
]


def get_model_info(model_id: str) -> Optional[ModelInfo]:
    for info in MODEL_CATALOG:
        if info.id == model_id:
            return info
    return None


def models_by_category(category: ModelCategory) -> list[ModelInfo]:
    """Catalog entries of one category in built-in default order."""
    return sorted(
        (m for m in MODEL_CATALOG if m.category == category),
        key=lambda m: m.priority,
    )


# ─────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────

@dataclass
class HealthRecord:
    model_id: str
    attempts: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_failure_at: Optional[float] = None

    @property
    def successes(self) -> int:
        return self.attempts - self.failures


@dataclass(frozen=True)
class ModelHealth:
    healthy: bool
    success_rate: float
    consecutive_failures: int


# ─────────────────────────────────────────────
# Shots, task groups, tasks
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class Shot:
    id: str
    duration: float
    shot_number: int = 0
    scene: str = ""
    characters: tuple[str, ...] = ()
    shot_size: str = ""
    camera_angle: str = ""
    camera_movement: str = ""
    visual_description: str = ""
    dialogue: str = ""
    visual_effects: str = ""
    audio_effects: str = ""


@dataclass
class TaskStatus:
    """Result of one status probe, already normalized by the adapter."""
    state: TaskState
    progress: int = 0
    result_url: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class SubmitResult:
    provider_task_id: str
    state: TaskState = TaskState.QUEUED


@dataclass
class Task:
    """One submission attempt of a task group against one provider/model."""
    provider_task_id: str
    provider: str
    model_id: str
    submitted_at: float = field(default_factory=time.time)
    state: TaskState = TaskState.QUEUED
    progress: int = 0
    result_url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TaskGroup:
    id: str
    task_number: int
    shot_ids: list[str]
    shots: list[Shot]
    total_duration: float
    batch_id: str = ""
    config: GenerationConfig = field(default_factory=GenerationConfig)
    prompt: str = ""
    reference_media: Optional[str] = None
    status: GroupStatus = GroupStatus.IDLE
    progress: int = 0
    model_id: Optional[str] = None
    provider: Optional[str] = None
    result_url: Optional[str] = None
    error: Optional[str] = None
    tasks: list[Task] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    @property
    def current_task(self) -> Optional[Task]:
        return self.tasks[-1] if self.tasks else None

    @property
    def provider_task_id(self) -> Optional[str]:
        task = self.current_task
        return task.provider_task_id if task else None

    @property
    def in_flight_task(self) -> Optional[Task]:
        """
        The provider task of the attempt in progress. A group still uploading
        has not been accepted remotely yet; its tasks belong to earlier attempts.
        """
        if self.status not in ACTIVE_STATUSES or self.status == GroupStatus.UPLOADING:
            return None
        return self.current_task

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
