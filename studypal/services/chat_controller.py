"""
Request lifecycle controller for one chat session.

Drives a question through quota gating, AI dispatch and the reveal of the
reply. Each request gets a RequestHandle; after every suspension point (the
AI call, the minimum-latency wait, each typewriter tick) the request checks
that its handle is still the current, uncancelled one before touching the
transcript. A stopped or superseded request therefore never shows output.

Cancellation is cooperative: the AI call keeps running in the background and
its result is dropped when it arrives.
"""
import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from studypal.core import config
from studypal.core.identity import Identity, Anonymous, describe_identity
from studypal.core.plan_limits import Plan, get_plan_display_name
from studypal.schemas.chat import ChatMessage, ImageAttachment
from studypal.services.ai_service import AIServiceError
from studypal.services.usage_service import LedgerError, UsageLedger, UsageSnapshot

logger = logging.getLogger(__name__)

Dispatch = Callable[[List[ChatMessage]], Awaitable[str]]
PlanSource = Callable[[Identity], Plan]

SENTENCE_END = ".!?"
CLAUSE_BREAK = ",;:"

STORAGE_WARNING = (
    "⚠️ We couldn't record your question right now, so it wasn't sent. "
    "Please try again in a moment."
)
CONNECTION_WARNING = "⚠️ Unable to connect to AI service. Please try again."
TIMEOUT_WARNING = "⚠️ The AI is taking too long to respond. Please try again."


@dataclass
class RevealSettings:
    """Timing of the response reveal, in seconds."""
    min_response_delay: float = 2.0
    word_threshold: int = 50
    letter_delay: float = 0.015
    symbol_delay: float = 0.03
    clause_pause: float = 0.12
    sentence_pause: float = 0.25
    dispatch_timeout: Optional[float] = 60.0

    @classmethod
    def from_config(cls) -> "RevealSettings":
        return cls(
            min_response_delay=config.MIN_RESPONSE_DELAY_MS / 1000,
            word_threshold=config.TYPEWRITER_WORD_THRESHOLD,
            dispatch_timeout=config.AI_REQUEST_TIMEOUT_SECONDS or None,
        )

    def character_delay(self, char: str) -> float:
        """Pause after showing ``char``: short for letters, longer after punctuation."""
        if char in SENTENCE_END:
            return self.sentence_pause
        if char in CLAUSE_BREAK:
            return self.clause_pause
        if char.isalnum() or char.isspace():
            return self.letter_delay
        return self.symbol_delay


@dataclass
class RequestHandle:
    """One in-flight question."""
    request_id: int
    started_at: float = 0.0
    cancelled: bool = False


def limit_reached_message(usage: UsageSnapshot, identity: Identity) -> str:
    """Informational notice with an upgrade hint suited to the caller."""
    message = (
        f"You've reached your daily limit of {usage.limit} questions "
        f"({usage.questions_asked}/{usage.limit} used) as a {get_plan_display_name(usage.plan_type)}."
    )
    if isinstance(identity, Anonymous):
        return message + " Sign up and upgrade to Gold or Diamond to keep asking today."
    if usage.plan_type == Plan.FREE:
        return message + " Upgrade to Gold or Diamond to keep asking today."
    if usage.plan_type == Plan.GOLD:
        return message + " Upgrade to Diamond for more daily questions, or come back tomorrow."
    return message + " Your questions reset tomorrow."


def failure_message(error: BaseException) -> str:
    if isinstance(error, AIServiceError):
        return f"⚠️ {error.user_message}"
    if isinstance(error, asyncio.TimeoutError):
        return TIMEOUT_WARNING
    return CONNECTION_WARNING


class ChatController:
    """
    State and request lifecycle for a single chat session.

    Runs on one event loop; callers interleave ``submit`` and ``cancel``
    as the user acts. ``on_change`` is called synchronously after every
    visible state change.
    """

    def __init__(
        self,
        identity: Identity,
        ledger: UsageLedger,
        dispatch: Dispatch,
        plan_source: PlanSource,
        settings: Optional[RevealSettings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_change: Optional[Callable[["ChatController"], None]] = None,
    ):
        self.identity = identity
        self.ledger = ledger
        self.dispatch = dispatch
        self.plan_source = plan_source
        self.settings = settings or RevealSettings.from_config()
        self._sleep = sleep
        self._clock = clock
        self.on_change = on_change

        self.messages: List[ChatMessage] = []
        self.usage: Optional[UsageSnapshot] = None
        self._usage_version = 0
        self.draft: str = ""
        self.attachment: Optional[ImageAttachment] = None
        self.is_dispatching = False
        self.is_revealing = False
        self.stop_requested = False

        self._current: Optional[RequestHandle] = None
        self._request_ids = itertools.count(1)

    # ── state ─────────────────────────────────────────────────────────

    @property
    def pending_request_id(self) -> Optional[int]:
        return self._current.request_id if self._current else None

    def is_authoritative(self, handle: RequestHandle) -> bool:
        """True while ``handle`` is the current request and was not stopped."""
        return self._current is handle and not handle.cancelled

    def state(self) -> dict:
        """Serialisable snapshot for clients."""
        return {
            "messages": [message.model_dump() for message in self.messages],
            "usage": self.usage.to_dict() if self.usage else None,
            "is_dispatching": self.is_dispatching,
            "is_revealing": self.is_revealing,
            "stop_requested": self.stop_requested,
            "pending_request_id": self.pending_request_id,
        }

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self)
        except Exception:
            logger.exception("Chat state listener failed")

    def _append(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        self._notify()
        return message

    def _notice(self, text: str) -> ChatMessage:
        return self._append(ChatMessage(role="assistant", content=text, local_only=True))

    def _current_plan(self) -> Plan:
        try:
            return self.plan_source(self.identity)
        except Exception as e:
            logger.warning(f"Plan lookup failed for {describe_identity(self.identity)}, using free: {e}")
            return Plan.FREE

    def _set_usage(self, usage: Optional[UsageSnapshot]) -> None:
        self.usage = usage
        self._usage_version += 1

    def _read_usage(self):
        return self.ledger.get_usage(self.identity, self._current_plan())

    async def refresh_usage(self) -> Optional[UsageSnapshot]:
        """
        Reload today's counters from the ledger.

        The read runs in a worker thread. If a question was recorded while it
        was in flight, the newer counters are kept.
        """
        version = self._usage_version
        result = await asyncio.to_thread(self._read_usage)
        if self._usage_version != version:
            return self.usage
        self._set_usage(result.usage)
        self._notify()
        return self.usage

    # ── user actions ──────────────────────────────────────────────────

    async def submit(
        self,
        question: Optional[str] = None,
        image: Optional[ImageAttachment] = None,
    ) -> Optional[RequestHandle]:
        """
        Ask a question (with an optional homework photo).

        Defaults to the current draft and attachment. Returns the request
        handle, or None when there was nothing to send.
        """
        text = (self.draft if question is None else question).strip()
        image = self.attachment if image is None else image
        if not text and image is None:
            return None

        handle = RequestHandle(request_id=next(self._request_ids))
        self._current = handle
        self.stop_requested = False
        self.is_revealing = False

        try:
            if not self._admit(handle):
                return handle

            self._append(ChatMessage(role="user", content=text, image=image))
            self.draft = ""
            self.attachment = None
            self.is_dispatching = True
            self._notify()

            transcript = [
                message.model_copy() for message in self.messages if not message.local_only
            ]
            handle.started_at = self._clock()
            logger.info(
                f"Dispatching request_id={handle.request_id} for {describe_identity(self.identity)}"
            )

            try:
                reply = await self._call_dispatch(transcript)
            except Exception as error:
                await self._deliver_failure(handle, error)
            else:
                await self._deliver_reply(handle, reply)
        finally:
            self._release(handle)

        return handle

    def cancel(self) -> None:
        """
        Stop the current request.

        The UI returns to idle immediately; the AI call is not aborted, its
        result is ignored when it arrives.
        """
        handle = self._current
        self.stop_requested = True
        if handle is not None:
            handle.cancelled = True
            logger.info(f"Request cancelled: request_id={handle.request_id}")

        self._current = None
        self.is_dispatching = False
        self.is_revealing = False
        self._notify()

    def new_chat(self) -> None:
        """Start over with an empty transcript."""
        if self._current is not None:
            self.cancel()
        self.messages.clear()
        self._notify()

    # ── lifecycle steps ───────────────────────────────────────────────

    def _admit(self, handle: RequestHandle) -> bool:
        """Check and consume quota; on refusal a notice explains why."""
        plan = self._current_plan()

        check = self.ledger.get_usage(self.identity, plan)
        if check.usage is None:
            self._notice(STORAGE_WARNING)
            return False

        self._set_usage(check.usage)
        if not check.usage.can_ask:
            logger.info(
                f"Request {handle.request_id} blocked by daily limit for {describe_identity(self.identity)}"
            )
            self._notice(limit_reached_message(self.usage, self.identity))
            return False

        recorded = self.ledger.record_question(self.identity, plan)
        if recorded.usage is not None:
            self._set_usage(recorded.usage)

        if recorded.success:
            return True

        if recorded.error == LedgerError.LIMIT_EXCEEDED:
            self._notice(limit_reached_message(self.usage, self.identity))
        else:
            self._notice(STORAGE_WARNING)
        return False

    async def _call_dispatch(self, transcript: List[ChatMessage]) -> str:
        if self.settings.dispatch_timeout:
            return await asyncio.wait_for(self.dispatch(transcript), self.settings.dispatch_timeout)
        return await self.dispatch(transcript)

    async def _wait_for_floor(self, handle: RequestHandle) -> None:
        """Hold fast replies until the minimum response time has passed."""
        remaining = self.settings.min_response_delay - (self._clock() - handle.started_at)
        if remaining > 0:
            await self._sleep(remaining)

    async def _deliver_reply(self, handle: RequestHandle, reply: str) -> None:
        if not self.is_authoritative(handle):
            logger.debug(f"Discarding stale reply for request_id={handle.request_id}")
            return

        await self._wait_for_floor(handle)
        if not self.is_authoritative(handle):
            logger.debug(f"Discarding reply cancelled during delay, request_id={handle.request_id}")
            return

        self.is_dispatching = False
        await self._reveal(handle, reply)

    async def _deliver_failure(self, handle: RequestHandle, error: Exception) -> None:
        logger.warning(f"AI dispatch failed for request_id={handle.request_id}: {error!r}")
        if not self.is_authoritative(handle):
            return

        await self._wait_for_floor(handle)
        if not self.is_authoritative(handle):
            return

        self.is_dispatching = False
        self._notice(failure_message(error))

    async def _reveal(self, handle: RequestHandle, reply: str) -> None:
        """
        Show the reply. Short replies are typed out one character at a time;
        stopping mid-way shows the rest at once.
        """
        message = self._append(ChatMessage(role="assistant", content=""))

        if len(reply.split()) > self.settings.word_threshold:
            message.content = reply
            self._notify()
            return

        self.is_revealing = True
        for index, char in enumerate(reply):
            if not self.is_authoritative(handle):
                break
            message.content = reply[:index + 1]
            self._notify()
            await self._sleep(self.settings.character_delay(char))

        message.content = reply
        self._notify()

    def _release(self, handle: RequestHandle) -> None:
        """Return to idle, unless a newer request owns the session."""
        if self._current is not handle:
            return
        self._current = None
        self.is_dispatching = False
        self.is_revealing = False
        self._notify()
