"""
Request/response models for the mutual-state HTTP API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List
from datetime import datetime


class HighlightContent(BaseModel):
    conversation_id: str
    message_id: str
    text: Optional[str] = None
    sent_at: Optional[datetime] = None

    @field_validator('conversation_id', 'message_id')
    @classmethod
    def must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('conversation_id and message_id cannot be empty')
        return v


class ApplyRequest(BaseModel):
    actor_id: str
    target_key: str
    intent: str
    kind: str
    content: Optional[HighlightContent] = None

    @field_validator('intent')
    @classmethod
    def intent_must_be_valid(cls, v):
        valid_intents = ['add', 'remove']
        if v not in valid_intents:
            raise ValueError(f'intent must be one of: {valid_intents}')
        return v

    @field_validator('kind')
    @classmethod
    def kind_must_be_valid(cls, v):
        valid_kinds = ['favorite', 'highlight']
        if v not in valid_kinds:
            raise ValueError(f'kind must be one of: {valid_kinds}')
        return v


class ToggleRequest(BaseModel):
    actor_id: str
    target_key: str
    kind: str
    content: Optional[HighlightContent] = None

    @field_validator('kind')
    @classmethod
    def kind_must_be_valid(cls, v):
        valid_kinds = ['favorite', 'highlight']
        if v not in valid_kinds:
            raise ValueError(f'kind must be one of: {valid_kinds}')
        return v


class MutualResultResponse(BaseModel):
    success: bool
    mutual: bool
    locked: bool
    lock_expires_at: Optional[datetime] = None
    streak_count: Optional[int] = None
    error_kind: Optional[str] = None
    message: str
    entity_id: Optional[str] = None
    entity_created: bool = False
    streak_outcome: Optional[str] = None


class StatusSnapshotResponse(BaseModel):
    favorited_by_me: bool
    favorited_by_other: bool
    is_mutual: bool
    is_locked: bool
    lock_expires_at: Optional[datetime] = None
    streak_count: int


class DailyIdResponse(BaseModel):
    actor_id: str
    daily_id: str
    display: str
    expires_at: datetime


class HighlightEntryResponse(BaseModel):
    message_id: str
    text: Optional[str] = None
    sent_at: Optional[datetime] = None
    counterpart_key: Optional[str] = None
    created_at: datetime


class HighlightListResponse(BaseModel):
    conversation_id: str
    highlights: List[HighlightEntryResponse]


class ClockResponse(BaseModel):
    now: datetime
    today: str
    next_reset_at: datetime
    seconds_until_reset: int
    countdown: str


class ReviewRequest(BaseModel):
    decision: str
    admin_id: str
    reason: Optional[str] = None

    @field_validator('decision')
    @classmethod
    def decision_must_be_valid(cls, v):
        valid_decisions = ['approve', 'reject']
        if v not in valid_decisions:
            raise ValueError(f'decision must be one of: {valid_decisions}')
        return v

    @field_validator('admin_id')
    @classmethod
    def admin_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('admin_id cannot be empty')
        return v


class ReviewResponse(BaseModel):
    success: bool
    message: str
    story_id: str
    status: Optional[str] = None
    error_kind: Optional[str] = None
    lock_expires_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class QueuedStoryResponse(BaseModel):
    id: str
    text: str
    sent_at: Optional[datetime] = None
    queued_at: datetime
    status: str
    is_locked: bool
    lock_expires_at: Optional[datetime] = None
    conversation_id: str
    message_id: str


class QueuedStoryListResponse(BaseModel):
    stories: List[QueuedStoryResponse]


class ApprovedStoryResponse(BaseModel):
    id: str
    text: str
    sent_at: Optional[datetime] = None
    approved_at: datetime
    expires_at: datetime
    view_count: int


class ApprovedStoryListResponse(BaseModel):
    stories: List[ApprovedStoryResponse]


class SweepResponse(BaseModel):
    deleted: int


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    connection_count: int
    pending_story_count: int
