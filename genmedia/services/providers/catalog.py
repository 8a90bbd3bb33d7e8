from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from genmedia.config import settings
from genmedia.domain.enums import MediaKind, StorageCategory
from genmedia.domain.models import ModelPreset


@dataclass(frozen=True)
class PollCadence:
    interval_seconds: float
    max_attempts: int


_PRESETS: List[ModelPreset] = [
    ModelPreset(
        key="kling-v1.6-pro",
        provider="replicate",
        model_id="kwaivgi/kling-v1.6-pro",
        kind=MediaKind.video,
        category=StorageCategory.generated_videos,
        content_type="video/mp4",
    ),
    ModelPreset(
        key="kling-v2",
        provider="replicate",
        model_id="kwaivgi/kling-v2.0",
        kind=MediaKind.video,
        category=StorageCategory.generated_videos,
        content_type="video/mp4",
    ),
    ModelPreset(
        key="minimax-hailuo-02",
        provider="replicate",
        model_id="minimax/hailuo-02",
        kind=MediaKind.video,
        category=StorageCategory.generated_videos,
        content_type="video/mp4",
    ),
    ModelPreset(
        key="veo-3",
        provider="replicate",
        model_id="google/veo-3",
        kind=MediaKind.video,
        category=StorageCategory.generated_videos,
        content_type="video/mp4",
    ),
    ModelPreset(
        key="gen4-image",
        provider="replicate",
        model_id="runwayml/gen4-image",
        kind=MediaKind.image,
        category=StorageCategory.multi_generate_images,
    ),
    ModelPreset(
        key="gpt-4.1-nano",
        provider="replicate",
        model_id="openai/gpt-4.1-nano",
        kind=MediaKind.text,
        category=StorageCategory.uploads,
    ),
    ModelPreset(
        key="flux-dev",
        provider="fal",
        model_id="fal-ai/flux/dev",
        kind=MediaKind.image,
        category=StorageCategory.generated_images,
    ),
]

PRESETS: Dict[str, ModelPreset] = {p.key: p for p in _PRESETS}


def get_preset(key: str) -> Optional[ModelPreset]:
    return PRESETS.get((key or "").strip())


def list_presets() -> List[ModelPreset]:
    return list(_PRESETS)


def cadence_for(kind: MediaKind) -> PollCadence:
    """Video jobs tick slower and get a larger attempt budget than text/image jobs."""
    if kind == MediaKind.video:
        return PollCadence(
            interval_seconds=settings.VIDEO_POLL_INTERVAL_SECONDS,
            max_attempts=settings.VIDEO_POLL_MAX_ATTEMPTS,
        )
    return PollCadence(
        interval_seconds=settings.FAST_POLL_INTERVAL_SECONDS,
        max_attempts=settings.FAST_POLL_MAX_ATTEMPTS,
    )
