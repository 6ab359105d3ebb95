"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...db.supabase import get_supabase_client

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


@router.get("/health/database", status_code=status.HTTP_200_OK)
def check_database() -> dict:
    """Report whether trips are persisted to Supabase or kept in memory."""
    supabase = get_supabase_client()
    if not supabase:
        return {
            "configured": False,
            "store": "memory",
            "message": "Supabase not configured. Set FLEET_SUPABASE_URL and FLEET_SUPABASE_KEY environment variables.",
        }

    try:
        supabase.table("trips").select("id", count="exact").limit(1).execute()
        return {"configured": True, "connected": True, "store": "supabase"}
    except Exception as exc:
        return {
            "configured": True,
            "connected": False,
            "store": "supabase",
            "error": str(exc),
            "message": f"Database connection error: {exc}",
        }
