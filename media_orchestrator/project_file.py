"""
Job File Loader: load a generation batch from a YAML file
=========================================================
Schema reference (only `shots` is required):

    batch_id: "episode-01"          # default: auto-generated
    max_group_duration: 15          # default: MEDIA_ORCH_MAX_GROUP_DURATION
    aspect_ratio: "16:9"            # or "9:16"
    duration: "15"                  # seconds requested per clip
    quality: standard               # standard | pro | hd
    reference_media: "https://..."  # optional, attached to every group
    priorities:
      video: [sora-2-yunwu, sora-2-kie]
    prompts:                        # optional per-group prompt overrides
      1: "Shot 1: ..."
    shots:
      - id: s1
        duration: 5
        scene: "Rooftop at dusk"
        visual_description: "Wide shot of the skyline"
        characters: [Mia]
        camera_movement: "slow dolly in"
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ValidationError
from .models import GenerationConfig, ModelCategory, Quality, Shot


# ─────────────────────────────────────────────────────────────────────────────
# Public result type
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class JobFileResult:
    """Everything extracted from a YAML job file."""
    shots: list[Shot]
    config: GenerationConfig
    batch_id: Optional[str] = None
    max_group_duration: Optional[float] = None
    reference_media: Optional[str] = None
    priorities: dict[ModelCategory, list[str]] = field(default_factory=dict)
    prompts: dict[int, str] = field(default_factory=dict)


# ─────────────────────────────────────────────────────────────────────────────
# Loader
# ─────────────────────────────────────────────────────────────────────────────

def load_job_file(path: str | Path) -> JobFileResult:
    """
    Parse a YAML job file and return a JobFileResult.

    Raises
    ------
    FileNotFoundError  : file doesn't exist
    ValidationError    : required fields missing or values invalid
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Job file not found: {path}")

    with open(path, encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValidationError(f"'{path}': top level must be a mapping")

    # ── Shots ─────────────────────────────────────────────────────────────────
    shots_raw = raw.get("shots") or []
    if not shots_raw:
        raise ValidationError(f"'{path}': 'shots' must list at least one shot")
    shots = [_parse_shot(s, i, path) for i, s in enumerate(shots_raw, start=1)]
    seen: set[str] = set()
    for shot in shots:
        if shot.id in seen:
            raise ValidationError(f"'{path}': duplicate shot id '{shot.id}'")
        seen.add(shot.id)

    # ── Generation config ─────────────────────────────────────────────────────
    aspect_ratio = str(raw.get("aspect_ratio", "16:9"))
    if aspect_ratio not in ("16:9", "9:16"):
        raise ValidationError(f"'{path}': aspect_ratio must be '16:9' or '9:16'")
    try:
        quality = Quality(str(raw.get("quality", "standard")).lower())
    except ValueError:
        valid = [q.value for q in Quality]
        raise ValidationError(f"'{path}': unknown quality. Valid values: {valid}") from None
    config = GenerationConfig(
        aspect_ratio=aspect_ratio,
        duration=str(raw.get("duration", "15")),
        quality=quality,
    )

    # ── Misc ──────────────────────────────────────────────────────────────────
    max_group_duration: Optional[float] = None
    if raw.get("max_group_duration") is not None:
        try:
            max_group_duration = float(raw["max_group_duration"])
        except (TypeError, ValueError):
            raise ValidationError(f"'{path}': max_group_duration must be a number") from None
        if max_group_duration <= 0:
            raise ValidationError(f"'{path}': max_group_duration must be positive")
    batch_id = str(raw["batch_id"]).strip() if raw.get("batch_id") else None
    reference_media = str(raw["reference_media"]) if raw.get("reference_media") else None

    # ── Priorities ────────────────────────────────────────────────────────────
    priorities: dict[ModelCategory, list[str]] = {}
    for key, ids in (raw.get("priorities") or {}).items():
        try:
            category = ModelCategory(key)
        except ValueError:
            valid = [c.value for c in ModelCategory]
            raise ValidationError(
                f"'{path}': unknown category '{key}' in priorities. Valid values: {valid}"
            ) from None
        priorities[category] = [str(i) for i in (ids or [])]

    prompts = {int(k): str(v) for k, v in (raw.get("prompts") or {}).items() if v}

    return JobFileResult(
        shots=shots,
        config=config,
        batch_id=batch_id,
        max_group_duration=max_group_duration,
        reference_media=reference_media,
        priorities=priorities,
        prompts=prompts,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Internal helpers
# ─────────────────────────────────────────────────────────────────────────────

_SHOT_FIELDS = {f.name for f in fields(Shot)}


def _parse_shot(raw: Any, index: int, source_path: Path) -> Shot:
    """Convert a YAML shot dict → Shot dataclass."""
    if not isinstance(raw, dict):
        raise ValidationError(f"'{source_path}': shot #{index} must be a mapping")
    unknown = set(raw) - _SHOT_FIELDS
    if unknown:
        raise ValidationError(
            f"'{source_path}': shot #{index} has unknown field(s) {sorted(unknown)}"
        )
    try:
        duration = float(raw.get("duration") or 0)
    except (TypeError, ValueError):
        raise ValidationError(
            f"'{source_path}': shot #{index} duration must be a number"
        ) from None

    values = {k: v for k, v in raw.items() if k not in ("id", "duration", "characters")}
    return Shot(
        id=str(raw.get("id") or f"shot-{index}"),
        duration=duration,
        shot_number=int(raw.get("shot_number") or index),
        characters=tuple(str(c) for c in (raw.get("characters") or ())),
        **{k: str(v) for k, v in values.items() if k != "shot_number"},
    )
