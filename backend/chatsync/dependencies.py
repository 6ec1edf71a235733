"""FastAPI dependencies."""

from fastapi import HTTPException, Request

from chatsync.services.chat_session import ChatSession


def get_chat_session(request: Request) -> ChatSession:
    """Return the chat session started by the application lifespan."""

    session = getattr(request.app.state, "chat_session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Chat session is not running.")
    return session
