from datetime import datetime

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    recipient_id: str
    content: str = ""
    created_at: datetime


class Conversation(BaseModel):
    """A job-application chat: the employer of the job post and the applicant."""

    id: str
    employer_id: str
    seeker_id: str


class ChatMessageEvent(BaseModel):
    message: ChatMessage
    conversation: Conversation


class ChatMessageAccepted(BaseModel):
    accepted: bool = True
    message_id: str = Field(description="id of the message the dispatch was scheduled for")
