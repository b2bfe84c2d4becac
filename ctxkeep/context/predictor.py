"""Starting-level prediction from past compression outcomes.

Starting escalation at the level similar conversations ended up at saves
re-running the cheaper levels every turn. The history is bounded in size and
age and persisted through Storage.
"""

import logging
import math
import time
from dataclasses import asdict, dataclass

from ctxkeep.storage.storage import Storage

from .levels import CompressionLevel

logger = logging.getLogger(__name__)

MAX_AGE_SECONDS = 7 * 24 * 60 * 60
SIMILAR_MESSAGES = 5
SIMILAR_CHARS = 5000


@dataclass
class CompressionRecord:
    message_count: int
    context_size: int
    applied_level: int
    timestamp: float


class CompressionPredictor:
    def __init__(
        self,
        key: list[str] | None = None,
        max_records: int = 50,
        max_age: float = MAX_AGE_SECONDS,
        clock=time.time,
    ):
        self.key = key or ["predictor", "history"]
        self.max_records = max_records
        self.max_age = max_age
        self.clock = clock
        self.history: list[CompressionRecord] = self._load()

    def _load(self) -> list[CompressionRecord]:
        data = Storage.read(self.key) or []
        now = self.clock()
        records = []
        for item in data:
            try:
                record = CompressionRecord(**item)
            except TypeError:
                continue
            if now - record.timestamp < self.max_age:
                records.append(record)
        return records[-self.max_records:]

    def _save(self):
        Storage.write(self.key, [asdict(r) for r in self.history])

    def predict_level(self, message_count: int, context_size: int) -> CompressionLevel:
        """Predict where escalation will end for a log of this size"""
        if len(self.history) < 3:
            return CompressionLevel.FULL

        similar = [
            r for r in self.history
            if abs(r.message_count - message_count) <= SIMILAR_MESSAGES
            and abs(r.context_size - context_size) < SIMILAR_CHARS
        ]

        if not similar:
            avg = sum(r.applied_level for r in self.history) / len(self.history)
            return CompressionLevel(math.floor(avg))

        now = self.clock()
        weighted = 0.0
        total_weight = 0.0
        for record in similar:
            # Full weight within the hour, 10% less per hour after, never below 0.3
            age_hours = (now - record.timestamp) / 3600
            weight = max(0.3, 1.0 - age_hours * 0.1)
            weighted += record.applied_level * weight
            total_weight += weight

        predicted = min(math.ceil(weighted / total_weight), int(CompressionLevel.HANDOFF))
        logger.info(f"Predicted L{predicted} from {len(similar)} similar records")
        return CompressionLevel(predicted)

    def record(self, message_count: int, context_size: int, applied_level: int):
        self.history.append(CompressionRecord(
            message_count=message_count,
            context_size=context_size,
            applied_level=int(applied_level),
            timestamp=self.clock(),
        ))
        self.history = self.history[-self.max_records:]
        self._save()

    def clear(self):
        self.history = []
        self._save()

    def stats(self) -> dict:
        if not self.history:
            return {"record_count": 0, "avg_level": 0.0, "level_distribution": {}}
        distribution: dict[int, int] = {}
        for r in self.history:
            distribution[r.applied_level] = distribution.get(r.applied_level, 0) + 1
        return {
            "record_count": len(self.history),
            "avg_level": round(sum(r.applied_level for r in self.history) / len(self.history), 2),
            "level_distribution": distribution,
        }
