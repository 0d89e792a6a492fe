"""
Mission API Routes
==================

Endpoints:
- GET /api/missions - List mission projections
- GET /api/missions/{mission_id} - Full mission record
- POST /api/missions - Plan and execute a mission (returns when finished)
- WS /ws - Live lifecycle and protocol events
"""

from typing import Any, Dict, List, Optional, Union

import structlog
from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from missionforce.application.orchestrator import MissionOrchestrator

logger = structlog.get_logger()

router = APIRouter()


class CreateMissionRequest(BaseModel):
    """Request to create a mission."""

    goal: Optional[str] = None
    context: Optional[Union[str, Dict[str, Any]]] = None


class MissionListResponse(BaseModel):
    missions: List[Dict[str, Any]]


class MissionResponse(BaseModel):
    mission: Dict[str, Any]


def _orchestrator(request: Request) -> MissionOrchestrator:
    return request.app.state.orchestrator


@router.get("/api/missions", response_model=MissionListResponse)
async def list_missions(request: Request) -> MissionListResponse:
    return MissionListResponse(missions=_orchestrator(request).list_missions())


@router.get("/api/missions/{mission_id}", response_model=MissionResponse)
async def get_mission(mission_id: str, request: Request) -> MissionResponse:
    mission = _orchestrator(request).get_mission(mission_id)
    if mission is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mission not found")
    return MissionResponse(mission=mission.to_dict())


@router.post(
    "/api/missions",
    response_model=MissionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_mission(body: CreateMissionRequest, request: Request) -> MissionResponse:
    """
    Create a mission and run it to completion or failure.

    Raises:
        HTTPException 400: If goal is missing
        HTTPException 500: If the orchestrator fails unexpectedly
    """
    if not body.goal or not body.goal.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="goal is required")
    try:
        mission = await _orchestrator(request).create_mission(body.goal, body.context)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except Exception as e:
        logger.error("api.create_mission_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    return MissionResponse(mission=mission.to_dict())


@router.websocket("/ws")
async def mission_feed(websocket: WebSocket) -> None:
    """Forward every broadcast event to the client as JSON."""
    orchestrator: MissionOrchestrator = websocket.app.state.orchestrator
    await websocket.accept()
    logger.info("ws.connected", client=str(websocket.client))
    try:
        async for event in orchestrator.events.stream():
            await websocket.send_json(event.to_message())
    except WebSocketDisconnect:
        logger.info("ws.disconnected", client=str(websocket.client))
