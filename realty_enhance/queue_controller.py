"""
Enhancement Queue Controller
Drives pending photos one at a time through the remote enhancement call

Records are processed strictly in insertion order with a single call in
flight, so credit balance updates arrive in the same order the calls were
started. The shared balance is only ever set from server-confirmed values.
"""
import asyncio
import logging
import uuid
from enum import Enum
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import presets
from .cancellation import CancellationToken, OperationCancelled
from .config import get_config, Preset, ProcessingStatus
from .enhance_client import Enhancer
from .logging_config import create_batch_logger
from .records import ImageQueue, ImageRecord

logger = logging.getLogger(__name__)


class EnhancementSettings(BaseModel):
    """Preset and options applied to every photo of one run"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    preset: str = Field(default_factory=lambda: get_config().presets.default_preset)
    strength: int = Field(default_factory=lambda: get_config().strength.default)
    face_enhance: bool = Field(False, alias="faceEnhance")

    @field_validator("preset", mode="before")
    @classmethod
    def _preset_value(cls, value):
        # Unknown presets are kept; pricing falls back to the cheapest tier
        return value.value if isinstance(value, Preset) else value

    @field_validator("strength")
    @classmethod
    def _strength_in_range(cls, value: int) -> int:
        bounds = get_config().strength
        if not bounds.contains(value):
            raise ValueError(f"strength must be between {bounds.minimum} and {bounds.maximum}")
        return value

    def options_payload(self) -> dict:
        return {"strength": self.strength, "faceEnhance": self.face_enhance}


class CreditBalance:
    """
    Shared credit counter

    ``value`` is None until a balance is known. The controller is the only
    writer, and only with balances reported by the server.
    """

    def __init__(self, value: Optional[int] = None):
        self._value = value

    @property
    def value(self) -> Optional[int]:
        return self._value

    def apply_server_balance(self, value: int):
        logger.debug(f"Credit balance {self._value} -> {value}")
        self._value = value

    def __repr__(self):
        return f"CreditBalance({self._value})"


@dataclass
class QueueState:
    """Progress of the current (or last) run"""
    is_running: bool = False
    current_index: int = 0
    total_in_batch: int = 0
    completed_count: int = 0
    failed_count: int = 0

    @property
    def progress_percent(self) -> float:
        if self.total_in_batch == 0:
            return 0.0
        done = self.completed_count + self.failed_count
        return round(done / self.total_in_batch * 100, 1)


class BatchSignal(str, Enum):
    """Whole-batch outcome reported by start()"""
    FINISHED = "finished"
    CANCELLED = "cancelled"
    NO_WORK = "no_work"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    BUSY = "busy"


@dataclass
class BatchOutcome:
    signal: BatchSignal
    total: int = 0
    completed_count: int = 0
    failed_count: int = 0
    cost: int = 0
    message: str = ""

    @property
    def ran(self) -> bool:
        return self.signal in (BatchSignal.FINISHED, BatchSignal.CANCELLED)


# Events sent over the optional channel

@dataclass
class ItemStarted:
    record_id: str
    index: int
    total: int


@dataclass
class ItemCompleted:
    record_id: str
    result_url: str


@dataclass
class ItemFailed:
    record_id: str
    reason: str


@dataclass
class ItemCancelled:
    record_id: str


@dataclass
class CreditsUpdated:
    balance: int


@dataclass
class BatchFinished:
    outcome: BatchOutcome


QueueEvent = Union[ItemStarted, ItemCompleted, ItemFailed, ItemCancelled, CreditsUpdated, BatchFinished]


class EnhancementQueue:
    """
    Sequential enhancement queue with cooperative cancellation

    Item failures are recorded on the item and never abort the batch.
    Only ``no_work``, ``insufficient_credits`` and ``busy`` are reported as
    whole-batch signals without touching any record.
    """

    def __init__(
        self,
        enhancer: Enhancer,
        credits: Optional[CreditBalance] = None,
        events: Optional["asyncio.Queue[QueueEvent]"] = None
    ):
        self.enhancer = enhancer
        self.credits = credits if credits is not None else CreditBalance()
        self.events = events
        self.state = QueueState()
        self._token: Optional[CancellationToken] = None
        self._batch_logger = create_batch_logger(__name__)

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    def total_cost(self, records: Iterable[ImageRecord], preset: Union[Preset, str]) -> int:
        return presets.total_cost(records, preset)

    async def _emit(self, event: QueueEvent):
        if self.events is not None:
            await self.events.put(event)

    async def start(self, records: Iterable[ImageRecord], settings: EnhancementSettings) -> BatchOutcome:
        """
        Enhance every pending record, in order, until done or cancelled

        When ``records`` is an ImageQueue it is locked for the duration of
        the run, so nothing can be removed from it mid-batch.
        """
        active_set = records if isinstance(records, ImageQueue) else None
        return await self._run(list(records), settings, active_set)

    async def _run(
        self,
        records: List[ImageRecord],
        settings: EnhancementSettings,
        active_set: Optional[ImageQueue] = None
    ) -> BatchOutcome:
        if self.state.is_running:
            return BatchOutcome(BatchSignal.BUSY, message="A run is already in progress")

        batch = [r for r in records if r.status == ProcessingStatus.PENDING]
        if not batch:
            logger.warning("Nothing to enhance: no pending photos")
            return BatchOutcome(BatchSignal.NO_WORK, message="No photos to enhance")

        cost = presets.total_cost(batch, settings.preset)
        available = self.credits.value
        if not presets.can_afford(batch, settings.preset, available):
            logger.warning(f"Insufficient credits: need {cost}, have {available}")
            return BatchOutcome(
                BatchSignal.INSUFFICIENT_CREDITS,
                total=len(batch),
                cost=cost,
                message=f"Not enough credits: {cost} needed, {available} available",
            )

        token = CancellationToken()
        self._token = token
        self.state = QueueState(is_running=True, total_in_batch=len(batch))

        self._batch_logger.start_run(
            uuid.uuid4().hex[:8],
            photos=len(batch),
            preset=settings.preset,
            strength=settings.strength,
            face_enhance=settings.face_enhance,
            cost=cost,
            balance=available,
        )

        signal = BatchSignal.FINISHED
        if active_set is not None:
            active_set.lock()
        try:
            for index, record in enumerate(batch):
                if token.cancelled:
                    record.return_to_pending()
                    self._batch_logger.log_item(index, len(batch), record.filename, "cancelled")
                    await self._emit(ItemCancelled(record.id))
                    signal = BatchSignal.CANCELLED
                    break

                if record.status != ProcessingStatus.PENDING:
                    logger.debug(f"Skipping {record.id}: status changed to {record.status.value}")
                    continue

                self.state.current_index = index
                record.mark_processing()
                await self._emit(ItemStarted(record.id, index, len(batch)))

                try:
                    result = await self.enhancer.enhance(record, settings, token)
                except OperationCancelled:
                    record.return_to_pending()
                    self._batch_logger.log_item(index, len(batch), record.filename, "cancelled")
                    await self._emit(ItemCancelled(record.id))
                    signal = BatchSignal.CANCELLED
                    break
                except Exception as e:
                    reason = str(e) or type(e).__name__
                    record.mark_failed(reason)
                    self.state.failed_count += 1
                    logger.error(f"Error enhancing {record.filename} ({record.id}): {reason}")
                    self._batch_logger.log_item(index, len(batch), record.filename, "failed", reason)
                    await self._emit(ItemFailed(record.id, reason))
                    continue

                record.mark_completed(result.url)
                self.state.completed_count += 1
                self.credits.apply_server_balance(result.remaining_credits)
                self._batch_logger.log_item(
                    index, len(batch), record.filename, "completed",
                    f"credits left: {result.remaining_credits}"
                )
                await self._emit(ItemCompleted(record.id, result.url))
                await self._emit(CreditsUpdated(result.remaining_credits))
        finally:
            # Nothing may stay in processing once the run is over
            for record in batch:
                if record.status == ProcessingStatus.PROCESSING:
                    record.return_to_pending()
            if active_set is not None:
                active_set.unlock()
            self.state.is_running = False
            self._token = None

        outcome = BatchOutcome(
            signal,
            total=len(batch),
            completed_count=self.state.completed_count,
            failed_count=self.state.failed_count,
            cost=cost,
            message=f"{self.state.completed_count} enhanced, {self.state.failed_count} failed",
        )
        self._batch_logger.end_run(
            signal.value,
            completed=outcome.completed_count,
            failed=outcome.failed_count,
            balance=self.credits.value,
        )
        await self._emit(BatchFinished(outcome))
        return outcome

    def cancel(self) -> bool:
        """Ask the current run to stop. Returns False when nothing is running."""
        if self._token is None:
            return False
        logger.info("Cancelling enhancement run...")
        self._token.cancel()
        return True

    async def retry(self, records: Iterable[ImageRecord], settings: EnhancementSettings) -> BatchOutcome:
        """
        Put every failed record back to pending and run the queue again

        Affordability is checked first: a blocked retry leaves failed
        records (and their failure reasons) untouched.
        """
        active_set = records if isinstance(records, ImageQueue) else None
        records = list(records)
        if self.state.is_running:
            return BatchOutcome(BatchSignal.BUSY, message="A run is already in progress")

        candidates = [
            r for r in records
            if r.status in (ProcessingStatus.PENDING, ProcessingStatus.FAILED)
        ]
        available = self.credits.value
        cost = len(candidates) * presets.cost(settings.preset)
        if candidates and available is not None and cost > available:
            logger.warning(f"Insufficient credits to retry: need {cost}, have {available}")
            return BatchOutcome(
                BatchSignal.INSUFFICIENT_CREDITS,
                total=len(candidates),
                cost=cost,
                message=f"Not enough credits: {cost} needed, {available} available",
            )

        reset = self._reset_failed(records)
        logger.info(f"Retrying {len(reset)} failed photo(s)")
        return await self._run(records, settings, active_set)

    async def retry_record(self, record: ImageRecord, settings: EnhancementSettings) -> BatchOutcome:
        """Retry a single failed record"""
        return await self.retry([record], settings)

    @staticmethod
    def _reset_failed(records: List[ImageRecord]) -> List[ImageRecord]:
        reset = []
        for record in records:
            if record.status == ProcessingStatus.FAILED:
                record.reset_failed()
                reset.append(record)
        return reset
