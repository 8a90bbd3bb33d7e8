from __future__ import annotations

from typing import List

from fastapi import APIRouter

from genmedia.domain.models import ModelView
from genmedia.services.providers.catalog import list_presets

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("", response_model=List[ModelView])
async def list_models() -> List[ModelView]:
    return [
        ModelView(key=p.key, provider=p.provider, model_id=p.model_id, kind=p.kind, category=p.category)
        for p in list_presets()
    ]
