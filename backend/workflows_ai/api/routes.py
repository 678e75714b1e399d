from fastapi import APIRouter
from .v1 import models, nodes, workflows

api_router = APIRouter(prefix="/api", tags=["workflows-ai"])

api_router.include_router(workflows.router, prefix="/v1", tags=["workflows"])
api_router.include_router(nodes.router, prefix="/v1", tags=["nodes"])
api_router.include_router(models.router, prefix="/v1", tags=["models"])

@api_router.get("/")
def read_root():
    return {"message": "Workflows AI engine is running"}
