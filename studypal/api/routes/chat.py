"""
Chat endpoints.

POST /chat/completions is the one-shot path: quota first, then the AI.
WS /ws/chat runs a full ChatController per connection and pushes its state
to the client after every change (quota notices, typewriter ticks, stop).
"""
import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Set

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from studypal.core import config
from studypal.core.auth_dependency import get_identity, resolve_identity
from studypal.core.identity import Identity, describe_identity
from studypal.core.quota_guard import consume_question, get_ledger, get_plan_source
from studypal.schemas.chat import ChatCompletionRequest, ChatCompletionResponse, SubmitFrame
from studypal.services import ai_service
from studypal.services.ai_service import AIServiceError
from studypal.services.chat_controller import ChatController, Dispatch, RevealSettings
from studypal.services.profile_service import ProfilePlanSource
from studypal.services.usage_service import UsageLedger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])

# Close code for a socket whose identity could not be established
POLICY_VIOLATION = 1008


def get_dispatch() -> Dispatch:
    """AI dispatch used by chat sockets."""
    return ai_service.send_message


def get_reveal_settings() -> RevealSettings:
    return RevealSettings.from_config()


@router.post("/chat/completions", response_model=ChatCompletionResponse)
async def chat_completions(
    request: ChatCompletionRequest,
    identity: Identity = Depends(get_identity),
    ledger: UsageLedger = Depends(get_ledger),
    plan_source: ProfilePlanSource = Depends(get_plan_source),
):
    """
    Answer a question in one request.

    The question is counted once the body has validated, before the AI is
    called, and is not refunded if the AI fails.
    """
    usage = consume_question(identity, ledger, plan_source)

    try:
        reply = await asyncio.wait_for(
            ai_service.send_message(request.messages),
            config.AI_REQUEST_TIMEOUT_SECONDS,
        )
    except AIServiceError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "ai_unavailable", "message": e.user_message},
        )
    except asyncio.TimeoutError:
        logger.error(f"AI request timed out after {config.AI_REQUEST_TIMEOUT_SECONDS}s")
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail={"error": "ai_timeout", "message": "The AI is taking too long to respond. Please try again."},
        )

    return ChatCompletionResponse(
        response=reply,
        timestamp=datetime.now(timezone.utc).isoformat(),
        usage=usage.to_dict(),
    )


async def _send_frames(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Forward queued frames to the client until the socket goes away."""
    while True:
        frame = await outbox.get()
        try:
            await websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError):
            return


@router.websocket("/ws/chat")
async def chat_socket(
    websocket: WebSocket,
    token: Optional[str] = None,
    device_id: Optional[str] = None,
    ledger: UsageLedger = Depends(get_ledger),
    plan_source: ProfilePlanSource = Depends(get_plan_source),
    dispatch: Dispatch = Depends(get_dispatch),
):
    """
    Interactive chat session.

    Client frames: {"type": "submit", "question": ..., "image": ...},
    {"type": "cancel"}, {"type": "new_chat"}, {"type": "usage"}.
    Server frames: {"type": "state", ...} and {"type": "error", "message": ...}.
    """
    try:
        identity = resolve_identity(token, device_id)
    except HTTPException as e:
        await websocket.close(code=POLICY_VIOLATION, reason=str(e.detail))
        return

    await websocket.accept()
    logger.info(f"Chat socket opened for {describe_identity(identity)}")

    outbox: asyncio.Queue = asyncio.Queue()
    controller = ChatController(
        identity,
        ledger,
        dispatch,
        plan_source,
        settings=get_reveal_settings(),
        on_change=lambda c: outbox.put_nowait({"type": "state", **c.state()}),
    )
    sender = asyncio.create_task(_send_frames(websocket, outbox))
    requests: Set[asyncio.Task] = set()

    await controller.refresh_usage()

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                kind = frame.get("type")
            except (ValueError, AttributeError):
                outbox.put_nowait({"type": "error", "message": "Frames must be JSON objects"})
                continue

            if kind == "submit":
                try:
                    submit = SubmitFrame.model_validate(frame)
                except ValidationError:
                    outbox.put_nowait({"type": "error", "message": "Invalid submit frame"})
                    continue
                task = asyncio.create_task(controller.submit(submit.question, submit.image))
                requests.add(task)
                task.add_done_callback(requests.discard)
            elif kind == "cancel":
                controller.cancel()
            elif kind == "new_chat":
                controller.new_chat()
            elif kind == "usage":
                task = asyncio.create_task(controller.refresh_usage())
                requests.add(task)
                task.add_done_callback(requests.discard)
            else:
                outbox.put_nowait({"type": "error", "message": f"Unknown frame type: {kind}"})

    except WebSocketDisconnect:
        logger.info(f"Chat socket closed for {describe_identity(identity)}")
    finally:
        controller.on_change = None
        for task in list(requests):
            task.cancel()
        sender.cancel()
