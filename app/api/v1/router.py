from fastapi import APIRouter
from app.api.v1.endpoints import (
    admin_workflows,
    categories,
    documents,
    nodes,
    sync,
    workflows,
)

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(workflows.router, prefix="/workflows", tags=["Workflows"])
api_router.include_router(nodes.router, prefix="/nodes", tags=["Nodes"])
api_router.include_router(sync.router, prefix="/sync", tags=["Sync"])
api_router.include_router(categories.router, prefix="/categories", tags=["Categories"])
api_router.include_router(documents.router, prefix="/documents", tags=["Documents"])
api_router.include_router(admin_workflows.router, prefix="/admin/workflows", tags=["Admin"])

__all__ = ["api_router"]
