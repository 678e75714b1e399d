from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from workflows_ai.api.dependencies import get_config
from workflows_ai.config import EngineConfig

router = APIRouter(prefix="/models", tags=["models"])


@router.get("")
async def list_models(capability: Optional[str] = None, config: EngineConfig = Depends(get_config)):
    """List registered models, optionally only those with a given capability."""
    models = config.models.models
    if capability is not None:
        models = tuple(m for m in models if capability in m.capabilities)
        if not models:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"No models support capability '{capability}'",
            )
    return {
        "default": config.settings.default_model,
        "models": [m.model_dump() for m in models],
    }
