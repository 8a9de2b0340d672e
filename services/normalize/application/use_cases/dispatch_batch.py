from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from services.normalize.application.events import iter_object_refs
from services.normalize.application.use_cases.normalize_media import (
    NormalizeMediaUseCase,
)
from services.normalize.domain.media import MediaKey, ObjectRef, RecordOutcome

logger = logging.getLogger(__name__)


class DispatchBatchUseCase:
    """Runs every notification of a batch in order, one failure never stops the rest."""

    def __init__(
        self,
        *,
        normalizer: NormalizeMediaUseCase,
        raw_segment: str = "raw",
        on_outcome: Callable[[RecordOutcome], None] | None = None,
    ) -> None:
        self._normalizer = normalizer
        self._raw_segment = raw_segment
        self._on_outcome = on_outcome

    def execute(
        self, event: Mapping[str, Any], *, deadline: float | None = None
    ) -> list[RecordOutcome]:
        return self.dispatch(list(iter_object_refs(event)), deadline=deadline)

    def dispatch(
        self, refs: list[ObjectRef], *, deadline: float | None = None
    ) -> list[RecordOutcome]:
        outcomes = []
        for ref in refs:
            outcome = self._process(ref, deadline)
            outcomes.append(outcome)
            if self._on_outcome is not None and not outcome.skipped:
                try:
                    self._on_outcome(outcome)
                except Exception:
                    logger.exception("Outcome callback failed for %s", ref.key)
        return outcomes

    def _process(self, ref: ObjectRef, deadline: float | None) -> RecordOutcome:
        if MediaKey.parse(ref.key, self._raw_segment) is None:
            logger.info("Skipping file not in %s folder: %s", self._raw_segment, ref.key)
            return RecordOutcome(ref=ref, skipped=True)
        try:
            record = self._normalizer.execute(ref, deadline=deadline)
        except Exception as exc:
            logger.exception("Error processing record %s/%s", ref.bucket, ref.key)
            return RecordOutcome(ref=ref, error=str(exc) or exc.__class__.__name__)
        return RecordOutcome(ref=ref, record=record)
