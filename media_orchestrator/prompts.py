"""Plain shot-list prompt used when no richer prompt is supplied for a group."""
from __future__ import annotations

from typing import Sequence

from .models import Shot


def build_story_prompt(shots: Sequence[Shot]) -> str:
    blocks = []
    for index, shot in enumerate(shots, start=1):
        duration = float(shot.duration or 5)
        blocks.append(
            f"Shot {index}:\n"
            f"duration: {duration:.1f}sec\n"
            f"Scene: {shot.visual_description}"
        )
    return "\n\n".join(blocks)
