"""
Wire models for HXA-Connect.
These mirror the JSON objects sent by the server over HTTP and the WebSocket.
Unknown fields are kept so newer servers do not break older clients.
Timestamps are integer milliseconds since the epoch.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


THREAD_STATUSES = ("active", "blocked", "reviewing", "resolved", "closed")


class WireModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ─────────────────────────────────────────────
# Entities
# ─────────────────────────────────────────────

class MessagePart(WireModel):
    type: str                     # text | markdown | json | file | image | link
    content: Any = None           # str for text/markdown, dict for json
    url: Optional[str] = None
    name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None
    alt: Optional[str] = None
    title: Optional[str] = None


class Channel(WireModel):
    id: str
    org_id: Optional[str] = None
    type: str = "direct"          # direct | group
    name: Optional[str] = None
    created_at: Optional[int] = None


class ChannelMessage(WireModel):
    id: str
    channel_id: str
    sender_id: Optional[str] = None
    content: str = ""
    content_type: str = "text"
    parts: list[MessagePart] = Field(default_factory=list)
    created_at: int = 0
    sender_name: Optional[str] = None


class Thread(WireModel):
    id: str
    org_id: Optional[str] = None
    topic: str = ""
    tags: Optional[list[str]] = None
    status: Optional[str] = None  # active | blocked | reviewing | resolved | closed
    initiator_id: Optional[str] = None
    channel_id: Optional[str] = None
    context: Any = None           # str or JSON object
    close_reason: Optional[str] = None
    permission_policy: Any = None
    revision: int = 0
    created_at: Optional[int] = None
    updated_at: Optional[int] = None
    last_activity_at: Optional[int] = None
    resolved_at: Optional[int] = None


class ThreadParticipant(WireModel):
    bot_id: str
    thread_id: Optional[str] = None
    name: Optional[str] = None
    online: Optional[bool] = None
    label: Optional[str] = None
    joined_at: Optional[int] = None


class ThreadDetail(Thread):
    """GET /api/threads/{id}: thread fields plus its participants."""
    participants: list[ThreadParticipant] = Field(default_factory=list)


class MentionRef(WireModel):
    bot_id: str
    name: str


class ThreadMessage(WireModel):
    id: str
    thread_id: str
    sender_id: Optional[str] = None
    content: str = ""
    content_type: str = "text"
    parts: list[MessagePart] = Field(default_factory=list)
    mentions: list[MentionRef] = Field(default_factory=list)
    mention_all: bool = False
    metadata: Any = None
    created_at: int = 0
    sender_name: Optional[str] = None


class Artifact(WireModel):
    id: Optional[str] = None
    thread_id: Optional[str] = None
    artifact_key: str
    type: str = "text"            # text | markdown | json | code | file | link
    title: Optional[str] = None
    content: Optional[str] = None
    language: Optional[str] = None
    url: Optional[str] = None
    mime_type: Optional[str] = None
    contributor_id: Optional[str] = None
    version: int = 1
    format_warning: bool = False
    created_at: Optional[int] = None
    updated_at: Optional[int] = None


class Agent(WireModel):
    id: str
    org_id: Optional[str] = None
    name: str = ""
    online: Optional[bool] = None
    bio: Optional[str] = None
    role: Optional[str] = None
    tags: Optional[list[str]] = None
    auth_role: Optional[str] = None
    created_at: Optional[int] = None


class BotRef(WireModel):
    id: str
    name: str = ""


# ─────────────────────────────────────────────
# WebSocket server events
# ─────────────────────────────────────────────

class ServerEvent(WireModel):
    """Any event frame. Unrecognized types are delivered as this base model."""
    type: str


class ChannelMessageEvent(ServerEvent):
    type: Literal["message"]
    channel_id: str
    message: ChannelMessage
    sender_name: Optional[str] = None


class BotPresenceEvent(ServerEvent):
    type: Literal["bot_online", "bot_offline"]
    bot: BotRef


class ChannelCreatedEvent(ServerEvent):
    type: Literal["channel_created"]
    channel: Channel
    members: list[str] = Field(default_factory=list)


class ThreadCreatedEvent(ServerEvent):
    type: Literal["thread_created"]
    thread: Thread


class ThreadUpdatedEvent(ServerEvent):
    type: Literal["thread_updated"]
    thread: Thread
    changes: list[str] = Field(default_factory=list)


class ThreadMessageEvent(ServerEvent):
    type: Literal["thread_message"]
    thread_id: str
    message: ThreadMessage


class ThreadArtifactEvent(ServerEvent):
    type: Literal["thread_artifact"]
    thread_id: str
    artifact: Artifact
    action: Literal["added", "updated"] = "added"


class ThreadParticipantEvent(ServerEvent):
    type: Literal["thread_participant"]
    thread_id: str
    bot_id: str
    bot_name: Optional[str] = None
    action: Literal["joined", "left"]
    by: Optional[str] = None
    label: Optional[str] = None


class ThreadStatusChangedEvent(ServerEvent):
    type: Literal["thread_status_changed"]
    thread_id: str
    topic: Optional[str] = None
    from_status: Optional[str] = Field(default=None, alias="from")
    to: str
    by: Optional[str] = None


class BotRenamedEvent(ServerEvent):
    type: Literal["bot_renamed"]
    bot_id: str
    old_name: Optional[str] = None
    new_name: str


class ServerErrorEvent(ServerEvent):
    type: Literal["error"]
    message: str = ""
    code: Optional[str] = None
    retry_after: Optional[float] = None


class PongEvent(ServerEvent):
    type: Literal["pong"]


EVENT_MODELS: dict[str, type[ServerEvent]] = {
    "message": ChannelMessageEvent,
    "bot_online": BotPresenceEvent,
    "bot_offline": BotPresenceEvent,
    "channel_created": ChannelCreatedEvent,
    "thread_created": ThreadCreatedEvent,
    "thread_updated": ThreadUpdatedEvent,
    "thread_message": ThreadMessageEvent,
    "thread_artifact": ThreadArtifactEvent,
    "thread_participant": ThreadParticipantEvent,
    "thread_status_changed": ThreadStatusChangedEvent,
    "bot_renamed": BotRenamedEvent,
    "error": ServerErrorEvent,
    "pong": PongEvent,
}


def parse_event(payload: Any) -> ServerEvent:
    """Validate a decoded frame into its typed event model.

    Raises ValueError if the payload is not an object with a string `type`,
    or if it does not match the model registered for that type.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise ValueError("event frame must be an object with a string 'type'")
    model = EVENT_MODELS.get(payload["type"], ServerEvent)
    return model.model_validate(payload)
