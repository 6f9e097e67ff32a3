"""
Trade signal submission service.
Validates each submitted item independently and fans out two writes per
accepted item: the signal itself, then its companion message.
"""

import logging
import time
from collections.abc import Mapping
from typing import Any, Dict, List, Optional

from ..domain.ports import PersistenceError, RecordStore, ValidationError
from ..domain.schema import BatchMetadata, SignalBatchResult, TradeSignal
from ..domain.validation import derived_message_text, normalize_signal
from ..telemetry.logger import MetricsLogger


logger = logging.getLogger(__name__)


class TradeSignalService:
    """
    Processes single or batched trade signal submissions.

    Items are handled sequentially in input order; a failing item is
    recorded and never aborts the rest of the batch.
    """

    def __init__(self, store: RecordStore, metrics: Optional[MetricsLogger] = None):
        """
        Initialize signal service.

        Args:
            store: Record store for signals and derived messages
            metrics: Optional metrics logger
        """
        self.store = store
        self.metrics = metrics or MetricsLogger()

    async def submit(self, payload: Any) -> SignalBatchResult:
        """
        Validate and persist one object or a list of objects.

        Args:
            payload: Decoded JSON body

        Returns:
            Created signals, per-item errors and summary counts

        Raises:
            ValidationError: If the body is neither an object nor an array
        """
        if isinstance(payload, Mapping):
            items = [payload]
        elif isinstance(payload, list):
            items = payload
        else:
            raise ValidationError("Body must be a signal object or an array of signal objects")

        start_time = time.time()
        created: List[TradeSignal] = []
        errors: List[Dict[str, Any]] = []

        for index, item in enumerate(items):
            signal = await self._process_item(index, item, errors)
            if signal is not None:
                created.append(signal)

        result = SignalBatchResult(
            data=created,
            errors=errors,
            metadata=BatchMetadata(total=len(created), errors=len(errors))
        )

        self.metrics.log_signal_batch(
            received=len(items),
            created=len(created),
            failed=len(errors),
            processing_time_ms=(time.time() - start_time) * 1000
        )

        return result

    async def _process_item(
        self,
        index: int,
        item: Any,
        errors: List[Dict[str, Any]]
    ) -> Optional[TradeSignal]:
        try:
            signal = normalize_signal(item)
        except ValidationError as e:
            logger.info(
                f"Signal item rejected: {e.error}",
                extra={"component": "signal_service", "index": index, "reason": type(e).__name__}
            )
            errors.append(self._item_error(index, e))
            return None

        try:
            stored = await self.store.create_trade_signal(
                symbol=signal.symbol,
                type=signal.type.value,
                entry=signal.entry,
                sl=signal.sl,
                tp=signal.tp,
                text=signal.text
            )
        except PersistenceError as e:
            logger.error(
                f"Failed to store signal: {e}",
                extra={"component": "signal_service", "index": index, "symbol": signal.symbol}
            )
            errors.append(self._item_error(index, PersistenceError(str(e), received=item)))
            return None

        try:
            await self.store.create_message(derived_message_text(signal))
        except PersistenceError as e:
            # The signal row stays; no compensating delete
            logger.error(
                f"Signal {stored.id} stored but derived message failed: {e}",
                extra={"component": "signal_service", "index": index, "signal_id": stored.id}
            )
            errors.append(self._item_error(
                index,
                PersistenceError(
                    f"Signal {stored.id} stored but derived message failed: {e}",
                    signal_id=stored.id,
                    received=item
                )
            ))
            return None

        logger.info(
            f"Signal created: {stored.symbol} {stored.type.value}",
            extra={
                "component": "signal_service",
                "signal_id": stored.id,
                "symbol": stored.symbol,
                "type": stored.type.value
            }
        )
        return stored

    @staticmethod
    def _item_error(index: int, error) -> Dict[str, Any]:
        payload = error.to_dict()
        payload["index"] = index
        return payload
