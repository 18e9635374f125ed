# timeline.py
# Append-only chat log per session.

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .ai_helpers import HISTORY_WINDOW
from .errors import NotFoundError
from .tables import ChatMessage, ChatSession, Role

REPLY_NOTICE = "Got reply from: {vendor}"


def create_session(session: Session) -> ChatSession:
    chat = ChatSession()
    session.add(chat)
    session.flush()
    return chat


def get_session(session: Session, session_id: str) -> ChatSession:
    chat = session.get(ChatSession, session_id)
    if chat is None:
        raise NotFoundError(f"not a valid session id: {session_id}")
    return chat


def session_for_rfp(session: Session, rfp_id: str) -> Optional[ChatSession]:
    return session.scalar(select(ChatSession).where(ChatSession.rfp_id == rfp_id))


def append(session: Session, session_id: str, role: Role, content: str,
           is_rfp: bool = False) -> ChatMessage:
    message = ChatMessage(session_id=session_id, role=role, content=content, is_rfp=is_rfp)
    session.add(message)
    session.flush()
    return message


def history(session: Session, session_id: str) -> List[ChatMessage]:
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at, ChatMessage.id)
    )
    return list(session.scalars(stmt))


def recent(session: Session, session_id: str, limit: int = HISTORY_WINDOW) -> List[ChatMessage]:
    """The newest `limit` messages, oldest first."""
    stmt = (
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(limit)
    )
    return list(reversed(list(session.scalars(stmt))))


def list_sessions(session: Session) -> List[ChatSession]:
    stmt = select(ChatSession).order_by(ChatSession.created_at.desc())
    return list(session.scalars(stmt))
