from fastapi import APIRouter

from app.core.config import settings

router = APIRouter()


@router.get("/health", summary="Health Check", description="Check the health status of the application.")
async def health_check():
    return {
        "status": "healthy",
        "embedding_provider": settings.embedding_provider,
        "batch_size": settings.synthesis_batch_size,
    }
