"""
API v1 routes
"""

from fastapi import APIRouter

from voxe_kb.api.api_v1.endpoints import documents, knowledge_bases, tier_limits

api_router = APIRouter()

api_router.include_router(
    knowledge_bases.router, prefix="/knowledge-bases", tags=["Knowledge Bases"]
)
api_router.include_router(documents.router, prefix="/documents", tags=["Documents"])
api_router.include_router(tier_limits.router, prefix="/tier-limits", tags=["Tier Limits"])
