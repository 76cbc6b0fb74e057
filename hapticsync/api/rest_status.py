"""REST endpoints for health and session status."""
from fastapi import APIRouter, HTTPException
from hapticsync.services.session_registry import session_registry

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Status and version information
    """
    return {
        "status": "ok",
        "version": "0.1.0"
    }


@router.get("/sessions")
async def list_sessions():
    """
    List active player sessions.

    Returns:
        Session identifiers
    """
    return {"sessions": await session_registry.list_sessions()}


@router.get("/sessions/{session_id}/status")
async def get_session_status(session_id: str):
    """
    Get the sync status of a session.

    Args:
        session_id: Session identifier

    Returns:
        State, buffered segments and latency budget of the session
    """
    service = await session_registry.get(session_id)

    if service is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")

    return {"session_id": session_id, **service.status()}
