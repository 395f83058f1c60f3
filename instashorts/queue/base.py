"""Queue fabric abstraction: stage names, retry policies and delivery semantics.

Every backend delivers at least once. A handler that raises is retried with
exponential backoff until its stage's attempt budget is spent; errors marked
non-retryable exhaust immediately. On exhaustion the handler's
``on_exhausted`` hook runs and the message is dead-lettered.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum

from instashorts.errors import is_retryable
from instashorts.models import new_id

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    SCRIPT = "script-generation"
    VOICEOVER = "voiceover-generation"
    SCENES = "scenes-generation"
    SCENE_IMAGE = "scene-image-generation"
    RENDER = "video-render"


@dataclass(frozen=True)
class StagePolicy:
    concurrency: int = 1
    attempts: int = 3
    backoff: float = 2.0

    def backoff_for(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number ``attempt`` (1-based)."""
        return self.backoff * 2 ** (attempt - 1)


def policies_from_config(config) -> dict[Stage, StagePolicy]:
    backoff = config.retry_backoff_seconds
    return {
        Stage.SCRIPT: StagePolicy(config.script_concurrency, config.script_attempts, backoff),
        Stage.VOICEOVER: StagePolicy(config.voiceover_concurrency, config.voiceover_attempts, backoff),
        Stage.SCENES: StagePolicy(config.scenes_concurrency, config.scenes_attempts, backoff),
        Stage.SCENE_IMAGE: StagePolicy(
            config.scene_image_concurrency, config.scene_image_attempts, backoff
        ),
        Stage.RENDER: StagePolicy(config.render_concurrency, config.render_attempts, backoff),
    }


@dataclass
class Message:
    stage: Stage
    payload: dict
    attempt: int = 1
    id: str = field(default_factory=new_id)

    def to_json(self) -> str:
        data = asdict(self)
        data["stage"] = self.stage.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> Message:
        data = json.loads(raw)
        return cls(
            stage=Stage(data["stage"]),
            payload=data["payload"],
            attempt=int(data.get("attempt", 1)),
            id=data["id"],
        )


class StageHandler(ABC):
    """One unit of pipeline work bound to a stage queue."""

    stage: Stage

    @abstractmethod
    async def run(self, payload: dict) -> None: ...

    async def on_exhausted(self, payload: dict, exc: BaseException) -> None:
        """Called once when a message will not be retried again."""


@dataclass
class Delivery:
    ok: bool
    retry_in: float | None = None
    error: BaseException | None = None


async def deliver(handler: StageHandler, message: Message, policy: StagePolicy) -> Delivery:
    """Run one delivery attempt and decide what happens to the message next."""
    try:
        await handler.run(message.payload)
        return Delivery(ok=True)
    except Exception as exc:
        if is_retryable(exc) and message.attempt < policy.attempts:
            delay = policy.backoff_for(message.attempt)
            logger.warning(
                "[%s] message %s failed (attempt %d/%d), retrying in %.1fs: %s",
                message.stage.value, message.id, message.attempt, policy.attempts, delay, exc,
            )
            return Delivery(ok=False, retry_in=delay, error=exc)

        logger.error(
            "[%s] message %s exhausted after attempt %d/%d: %s",
            message.stage.value, message.id, message.attempt, policy.attempts, exc,
        )
        try:
            await handler.on_exhausted(message.payload, exc)
        except Exception:
            logger.exception("[%s] failure hook raised for message %s", message.stage.value, message.id)
        return Delivery(ok=False, error=exc)


class EventFabric(ABC):
    """Delivers stage-trigger messages to registered handlers."""

    def __init__(self, policies: dict[Stage, StagePolicy] | None = None):
        self.policies: dict[Stage, StagePolicy] = dict(policies or {})
        self.handlers: dict[Stage, StageHandler] = {}

    def register(self, handler: StageHandler, policy: StagePolicy | None = None) -> None:
        self.handlers[handler.stage] = handler
        if policy is not None:
            self.policies[handler.stage] = policy
        self.policies.setdefault(handler.stage, StagePolicy())

    @abstractmethod
    async def emit(self, stage: Stage, payload: dict) -> None:
        """Enqueue a trigger for ``stage``."""
