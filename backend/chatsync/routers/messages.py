"""Conversation view and exchange routes."""

from fastapi import APIRouter, Depends, HTTPException

from chatsync.dependencies import get_chat_session
from chatsync.schemas.chat import CancelResult, ConversationState, SendMessageRequest
from chatsync.schemas.common import ApiResponse
from chatsync.services.chat_session import ChatSession
from chatsync.services.lifecycle import ExchangeRejectedError


router = APIRouter(prefix="/messages")


@router.get("", response_model=ApiResponse[ConversationState])
async def get_conversation(session: ChatSession = Depends(get_chat_session)) -> ApiResponse[ConversationState]:
    """Return the ordered messages with connectivity and processing flags."""

    return ApiResponse(data=session.state())


@router.post("", response_model=ApiResponse[ConversationState], status_code=202)
async def send_message(
    payload: SendMessageRequest,
    session: ChatSession = Depends(get_chat_session),
) -> ApiResponse[ConversationState]:
    """Start an exchange; its progress shows up in later `GET /messages` calls."""

    if not payload.content.strip():
        raise HTTPException(status_code=422, detail="Message content cannot be empty.")
    try:
        session.submit(payload.content)
    except ExchangeRejectedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ApiResponse(data=session.state())


@router.post("/cancel", response_model=ApiResponse[CancelResult])
async def cancel_exchange(session: ChatSession = Depends(get_chat_session)) -> ApiResponse[CancelResult]:
    """Cancel the exchange in flight, if any."""

    return ApiResponse(data=CancelResult(cancelled=session.coordinator.cancel()))
