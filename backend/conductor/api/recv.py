"""Agent inbox — POST /recv.

Delegates deliver `did` callbacks here (and peers may send `do`). The request
is validated and acknowledged at once; the conductor runs in a background
task, so conductor-side failures never reach the sender.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request
from pydantic import ValidationError

from conductor.agents.conductor import ConductorAgent
from conductor.models.messages import parse_agent_message

logger = logging.getLogger(__name__)

router = APIRouter(tags=["agent"])

_conductor: ConductorAgent | None = None


def set_conductor(conductor: ConductorAgent) -> None:
    global _conductor
    _conductor = conductor


async def _process(conductor: ConductorAgent, message, sender_id: str) -> None:
    try:
        await conductor.on_message(message)
    except Exception as e:
        logger.error(
            "Processing %s from %s (task %s) failed: %s",
            message.type, sender_id, message.task_id, e, exc_info=True,
        )


@router.post("/recv")
async def recv(
    request: Request,
    background_tasks: BackgroundTasks,
    x_sender_id: str | None = Header(default=None),
) -> dict:
    if not x_sender_id:
        raise HTTPException(status_code=400, detail="Missing x-sender-id header")
    if _conductor is None:
        raise HTTPException(status_code=503, detail="Conductor not initialized.")

    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON")
    try:
        message = parse_agent_message(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False))

    logger.debug("← %s: %s", x_sender_id, payload)
    background_tasks.add_task(_process, _conductor, message, x_sender_id)
    return {"status": "accepted", "taskId": message.task_id}
