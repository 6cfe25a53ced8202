"""
Buffered thread context with @mention triggering.

Incoming thread messages are buffered per thread and handed to mention
handlers as one consistent snapshot when the bot is @mentioned (or invited),
so an LLM sees the whole conversation instead of every single message.

Usage:
    ctx = ThreadContext(client, bot_names=["mybot"])

    @ctx.on_mention
    async def reply(trigger):
        prompt = ctx.to_prompt_context(trigger.thread_id)
        ...

    await ctx.start()
"""
import asyncio
import inspect
import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Pattern, Union

from hxa_connect.config import MAX_BUFFER_SIZE
from hxa_connect.models import (
    Artifact,
    BotRenamedEvent,
    Thread,
    ThreadArtifactEvent,
    ThreadCreatedEvent,
    ThreadMessage,
    ThreadMessageEvent,
    ThreadParticipant,
    ThreadParticipantEvent,
    ThreadStatusChangedEvent,
    ThreadUpdatedEvent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThreadSnapshot:
    thread: Thread
    participants: tuple[ThreadParticipant, ...]
    new_messages: tuple[ThreadMessage, ...]   # messages since the last delivery
    buffered_count: int                       # buffer length when the delivery started
    artifacts: tuple[Artifact, ...]           # latest version per artifact key


@dataclass(frozen=True)
class MentionTrigger:
    thread_id: str
    message: ThreadMessage
    snapshot: ThreadSnapshot


@dataclass(frozen=True)
class Watermark:
    timestamp: int = 0
    ids: frozenset = field(default_factory=frozenset)

    def admits(self, message: ThreadMessage) -> bool:
        """True if `message` was not covered by the delivery that set this mark."""
        if message.created_at > self.timestamp:
            return True
        return message.created_at == self.timestamp and message.id not in self.ids


MentionHandler = Callable[[MentionTrigger], Union[None, Awaitable[None]]]


class _ThreadBuffer:
    """Bounded FIFO of undelivered messages for one thread.

    `offset` is the absolute index of messages[0] among every message ever
    buffered for the thread. Deliveries remember an absolute end index, so the
    cut after a delivery stays exact even if the cap evicted entries or another
    delivery released some in the meantime.
    """

    def __init__(self) -> None:
        self.messages: list[ThreadMessage] = []
        self.offset = 0

    def __len__(self) -> int:
        return len(self.messages)

    def append(self, message: ThreadMessage, cap: int) -> None:
        self.messages.append(message)
        excess = len(self.messages) - cap
        if excess > 0:
            del self.messages[:excess]
            self.offset += excess

    def freeze(self) -> tuple[tuple[ThreadMessage, ...], int]:
        return tuple(self.messages), self.offset + len(self.messages)

    def release(self, end: int) -> None:
        """Drop every message whose absolute index is below `end`."""
        drop = end - self.offset
        if drop > 0:
            del self.messages[:drop]
            self.offset += drop


STATUS_GUIDES = {
    "active": (
        "Thread is active. You can:\n"
        '- Set to "blocked" if waiting for external input\n'
        '- Set to "reviewing" when deliverables are ready\n'
        '- Set to "resolved" if the goal is achieved\n'
        '- Set to "closed" to abandon'
    ),
    "blocked": (
        "Thread is blocked. You can:\n"
        '- Set to "active" when the blocker is resolved'
    ),
    "reviewing": (
        "Thread is in review. You can:\n"
        '- Set to "active" if changes are needed\n'
        '- Set to "resolved" if approved\n'
        '- Set to "closed" to abandon'
    ),
    "resolved": "Thread is resolved. This is a terminal state, no further changes expected.",
    "closed": "Thread is closed. This is a terminal state, no further changes expected.",
}


def status_guide(status: str) -> str:
    """Describe the usual next status transitions, for an LLM prompt."""
    return STATUS_GUIDES.get(status, f"Unknown status: {status}")


def mention_pattern(name: str) -> Pattern[str]:
    return re.compile(rf"@{re.escape(name)}\b", re.IGNORECASE)


def message_text(message: ThreadMessage) -> str:
    """Message content plus the text of any string-valued parts."""
    texts = [message.content or ""]
    for part in message.parts:
        if isinstance(part.content, str):
            texts.append(part.content)
    return " ".join(texts)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _format_time(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%H:%M:%S")


class ThreadContext:
    """Per-thread message buffers, caches and delivery watermarks for one bot.

    Args:
        client: Connected (or soon connected) HxaConnectClient.
        bot_names: Names that trigger delivery when @mentioned.
        bot_id: This bot's id; fetched from the profile on start() if omitted.
        trigger_patterns: Extra regexes (str or compiled) that trigger delivery.
        max_buffer_size: Messages kept per thread; the oldest are dropped first.
        trigger_on_invite: Deliver when this bot is invited to a thread.
    """

    def __init__(
        self,
        client,
        bot_names: Iterable[str],
        bot_id: Optional[str] = None,
        trigger_patterns: Optional[Iterable[Union[str, Pattern[str]]]] = None,
        max_buffer_size: int = MAX_BUFFER_SIZE,
        trigger_on_invite: bool = True,
    ) -> None:
        if max_buffer_size < 1:
            raise ValueError("max_buffer_size must be at least 1")
        self.client = client
        self.bot_names = list(bot_names)
        self.bot_id = bot_id
        self.max_buffer_size = max_buffer_size
        self.trigger_on_invite = trigger_on_invite

        self.trigger_patterns: list[Pattern[str]] = [mention_pattern(n) for n in self.bot_names]
        for p in trigger_patterns or ():
            self.trigger_patterns.append(re.compile(p, re.IGNORECASE) if isinstance(p, str) else p)

        self._buffers: dict[str, _ThreadBuffer] = {}
        self._thread_cache: dict[str, Thread] = {}
        self._participant_cache: dict[str, list[ThreadParticipant]] = {}
        self._artifact_cache: dict[str, list[Artifact]] = {}
        self._watermarks: dict[str, Watermark] = {}
        self._handlers: list[MentionHandler] = []
        self._deliveries: set[asyncio.Task] = set()
        self._listeners: list[tuple[str, Callable[[Any], None]]] = []
        self.started = False

    # ─────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────

    def on_mention(self, handler: MentionHandler) -> MentionHandler:
        """Register a handler called with a MentionTrigger on every delivery.

        Handlers run one after another in registration order. Returns the
        handler so this can be used as a decorator.
        """
        self._handlers.append(handler)
        return handler

    async def start(self) -> None:
        """Subscribe to thread events. Detects the bot id from the profile if needed."""
        if self.started:
            return
        self.started = True

        if not self.bot_id:
            try:
                profile = await self.client.get_profile()
            except Exception:
                self.started = False  # allow retry
                raise
            self.bot_id = profile.id

        self._listeners = [
            ("thread_message", self._on_thread_message),
            ("thread_created", self._on_thread_created),
            ("thread_updated", self._on_thread_updated),
            ("thread_status_changed", self._on_thread_status_changed),
            ("thread_artifact", self._on_thread_artifact),
            ("thread_participant", self._on_thread_participant),
            ("bot_renamed", self._on_bot_renamed),
        ]
        for event_type, listener in self._listeners:
            self.client.on(event_type, listener)
        logger.info(f"Thread context started for bot {self.bot_id} ({', '.join(self.bot_names)})")

    def stop(self) -> None:
        """Unsubscribe from thread events. Buffers and caches are kept."""
        self.started = False
        for event_type, listener in self._listeners:
            self.client.off(event_type, listener)
        self._listeners = []

    # ─────────────────────────────────────────────
    # Event listeners
    # ─────────────────────────────────────────────

    def _on_thread_message(self, event: Any) -> None:
        if isinstance(event, ThreadMessageEvent):
            self._handle_thread_message(event.thread_id, event.message)

    def _on_thread_created(self, event: Any) -> None:
        if not isinstance(event, ThreadCreatedEvent):
            return
        self._thread_cache[event.thread.id] = event.thread
        self._handle_invite(event.thread.id)

    def _on_thread_updated(self, event: Any) -> None:
        if isinstance(event, ThreadUpdatedEvent):
            self._thread_cache[event.thread.id] = event.thread

    def _on_thread_status_changed(self, event: Any) -> None:
        if not isinstance(event, ThreadStatusChangedEvent):
            return
        thread = self._thread_cache.get(event.thread_id)
        if thread is not None:
            self._thread_cache[event.thread_id] = thread.model_copy(update={"status": event.to})

    def _on_thread_artifact(self, event: Any) -> None:
        if not isinstance(event, ThreadArtifactEvent):
            return
        artifacts = self._artifact_cache.setdefault(event.thread_id, [])
        for i, existing in enumerate(artifacts):
            if existing.artifact_key == event.artifact.artifact_key:
                artifacts[i] = event.artifact
                break
        else:
            artifacts.append(event.artifact)

    def _on_thread_participant(self, event: Any) -> None:
        if not isinstance(event, ThreadParticipantEvent):
            return
        participants = self._participant_cache.get(event.thread_id)
        # Only patch a list we already fetched; a partial list would hide the fetch.
        if participants is not None:
            remaining = [p for p in participants if p.bot_id != event.bot_id]
            if event.action == "joined":
                remaining.append(ThreadParticipant(
                    bot_id=event.bot_id, thread_id=event.thread_id,
                    name=event.bot_name, label=event.label,
                ))
            self._participant_cache[event.thread_id] = remaining

        invited = (
            event.action == "joined"
            and event.bot_id == self.bot_id
            and event.by is not None
            and event.by != self.bot_id
        )
        if invited:
            self._handle_invite(event.thread_id)

    def _on_bot_renamed(self, event: Any) -> None:
        if not isinstance(event, BotRenamedEvent):
            return
        for thread_id, participants in self._participant_cache.items():
            self._participant_cache[thread_id] = [
                p.model_copy(update={"name": event.new_name}) if p.bot_id == event.bot_id else p
                for p in participants
            ]

    # ─────────────────────────────────────────────
    # Buffering and triggering
    # ─────────────────────────────────────────────

    def _handle_thread_message(self, thread_id: str, message: ThreadMessage) -> None:
        if not self.started:
            return
        # Never buffer our own messages.
        if self.bot_id is not None and message.sender_id == self.bot_id:
            return

        buffer = self._buffers.setdefault(thread_id, _ThreadBuffer())
        buffer.append(message, self.max_buffer_size)

        if self.is_trigger(message):
            self._begin_delivery(thread_id, message)

    def _handle_invite(self, thread_id: str) -> None:
        if self.started and self.trigger_on_invite:
            self._begin_delivery(thread_id, None)

    def is_trigger(self, message: ThreadMessage) -> bool:
        text = message_text(message)
        return any(p.search(text) for p in self.trigger_patterns)

    def _begin_delivery(self, thread_id: str, trigger_message: Optional[ThreadMessage]) -> asyncio.Task:
        # Freeze the buffer now, before any await: messages that arrive while
        # handlers run must neither join this snapshot nor be cleared by it.
        buffer = self._buffers.setdefault(thread_id, _ThreadBuffer())
        frozen, end = buffer.freeze()
        task = asyncio.get_running_loop().create_task(
            self._deliver(thread_id, trigger_message, frozen, end)
        )
        self._deliveries.add(task)
        task.add_done_callback(self._delivery_done)
        return task

    def _delivery_done(self, task: asyncio.Task) -> None:
        self._deliveries.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Delivery failed: {type(exc).__name__}: {exc}")
            self.client.emit_error(exc)

    async def _deliver(
        self,
        thread_id: str,
        trigger_message: Optional[ThreadMessage],
        frozen: tuple[ThreadMessage, ...],
        end: int,
    ) -> None:
        try:
            thread, participants = await self._ensure_thread_info(thread_id)

            snapshot = ThreadSnapshot(
                thread=thread,
                participants=tuple(participants),
                new_messages=frozen,
                buffered_count=len(frozen),
                artifacts=tuple(self._artifact_cache.get(thread_id, ())),
            )
            message = trigger_message
            if message is None and frozen:
                message = frozen[-1]
            if message is None:
                # Invite into an empty thread: handlers still get a message object.
                message = ThreadMessage(id="", thread_id=thread_id, sender_id=None, content="", created_at=_now_ms())
            trigger = MentionTrigger(thread_id=thread_id, message=message, snapshot=snapshot)

            # Handlers run before the buffer is released so to_prompt_context() still sees it.
            for handler in list(self._handlers):
                try:
                    result = handler(trigger)
                    if inspect.isawaitable(result):
                        await result
                except Exception as exc:
                    logger.warning(f"Mention handler failed for thread {thread_id}: {type(exc).__name__}: {exc}")
                    self.client.emit_error(exc)
        finally:
            # The frozen cut is released even when delivery fails.
            self._buffers[thread_id].release(end)

        # Watermark from message time, not local time, to avoid clock skew gaps.
        timestamp = frozen[-1].created_at if frozen else _now_ms()
        ids = frozenset(m.id for m in frozen if m.created_at == timestamp)
        self._watermarks[thread_id] = Watermark(timestamp=timestamp, ids=ids)

    async def _ensure_thread_info(self, thread_id: str) -> tuple[Thread, list[ThreadParticipant]]:
        thread = self._thread_cache.get(thread_id)
        participants = self._participant_cache.get(thread_id)
        if thread is not None and participants is not None:
            return thread, participants
        try:
            detail = await self.client.get_thread(thread_id)
        except Exception as exc:
            logger.warning(f"Could not fetch thread {thread_id}, using cached/placeholder data: {exc}")
            return (
                thread if thread is not None else Thread(id=thread_id, topic="unknown"),
                participants if participants is not None else [],
            )
        self._thread_cache[thread_id] = detail
        self._participant_cache[thread_id] = list(detail.participants)
        return detail, self._participant_cache[thread_id]

    async def flush(self, thread_id: str) -> None:
        """Deliver the buffered messages now, as if the latest one mentioned us."""
        buffer = self._buffers.get(thread_id)
        if buffer is None or not buffer.messages:
            return
        await self._begin_delivery(thread_id, buffer.messages[-1])

    # ─────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────

    def get_buffer_size(self, thread_id: str) -> int:
        buffer = self._buffers.get(thread_id)
        return len(buffer) if buffer is not None else 0

    def get_buffered_messages(self, thread_id: str) -> list[ThreadMessage]:
        buffer = self._buffers.get(thread_id)
        return list(buffer.messages) if buffer is not None else []

    def get_active_threads(self) -> list[str]:
        """Ids of threads that currently hold buffered messages."""
        return [tid for tid, buf in self._buffers.items() if len(buf) > 0]

    def get_watermark(self, thread_id: str) -> Watermark:
        return self._watermarks.get(thread_id, Watermark())

    def get_status_guide(self, status: str) -> str:
        return status_guide(status)

    # ─────────────────────────────────────────────
    # Prompt context
    # ─────────────────────────────────────────────

    def to_prompt_context(self, thread_id: str, mode: str = "full") -> str:
        """Render a thread as LLM-ready text.

        Modes:
            summary: thread header, participants, artifacts and a message count.
            full:    summary plus every buffered message.
            delta:   summary plus only messages newer than the last delivery.
        """
        if mode not in ("summary", "full", "delta"):
            raise ValueError(f"Invalid mode '{mode}'. Must be one of summary, full, delta")

        thread = self._thread_cache.get(thread_id)
        participants = self._participant_cache.get(thread_id, [])
        artifacts = self._artifact_cache.get(thread_id, [])
        buffered = self.get_buffered_messages(thread_id)

        lines: list[str] = []
        if thread is not None:
            lines.append(f"## Thread: {thread.topic}")
            lines.append(f"Status: {thread.status} | ID: {thread.id}")
            if thread.tags:
                lines.append(f"Tags: {', '.join(thread.tags)}")
            if thread.context:
                ctx = thread.context if isinstance(thread.context, str) else json.dumps(thread.context)
                lines.append(f"Context: {ctx}")
        else:
            lines.append(f"## Thread: {thread_id}")

        if participants:
            names = []
            for p in participants:
                label = f" ({p.label})" if p.label else ""
                names.append(f"{p.name or p.bot_id}{label}")
            lines.append(f"Participants: {', '.join(names)}")

        if artifacts:
            lines.append("")
            lines.append("### Artifacts")
            for a in artifacts:
                title = f": {a.title}" if a.title else ""
                lines.append(f"- **{a.artifact_key}** ({a.type}, v{a.version}){title}")

        if mode == "summary":
            lines.append("")
            lines.append(f"[{len(buffered)} new message(s) buffered]")
            return "\n".join(lines)

        if mode == "delta":
            watermark = self.get_watermark(thread_id)
            messages = [m for m in buffered if watermark.admits(m)]
        else:
            messages = buffered

        if messages:
            lines.append("")
            lines.append("### New Messages" if mode == "delta" else "### Messages")
            for m in messages:
                sender = m.sender_name or m.sender_id or "system"
                lines.append(f"[{_format_time(m.created_at)}] {sender}: {m.content}")

        return "\n".join(lines)
