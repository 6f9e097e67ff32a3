"""
SQLAlchemy implementation of the RecordStore interface.
Append-only writes and newest-first reads for messages and trade signals.
"""

import logging
from typing import Any, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ..domain.ports import PersistenceError, RecordStore
from ..domain.schema import Message, TradeSignal
from ..domain.validation import normalize_message_text, normalize_signal
from .database import Database
from .models import MessageModel, TradeSignalModel


logger = logging.getLogger(__name__)

SQL_INTEGER_MAX = 2 ** 63 - 1


class SqlRecordStore(RecordStore):
    """
    Relational record store backed by an async SQLAlchemy session per operation.
    """

    def __init__(self, database: Database):
        """
        Initialize record store.

        Args:
            database: Connected database client
        """
        self.database = database

    async def create_message(
        self,
        text: str,
        user_id: Optional[str] = None,
        chat_id: Optional[str] = None
    ) -> Message:
        text = normalize_message_text(text)

        try:
            async with self.database.session() as session:
                record = MessageModel(
                    text=text,
                    user_id=str(user_id) if user_id is not None else None,
                    chat_id=str(chat_id) if chat_id is not None else None
                )
                session.add(record)
                await session.commit()

            logger.debug(
                f"Message stored: {record.id}",
                extra={"component": "repository", "message_id": record.id}
            )
            return self._to_message(record)

        except SQLAlchemyError as e:
            logger.error(
                f"Failed to store message: {e}",
                extra={"component": "repository", "error": str(e)}
            )
            raise PersistenceError(str(e)) from e

    async def create_trade_signal(
        self,
        symbol: str,
        type: str,
        entry: Any,
        sl: Any,
        tp: Any,
        text: Optional[str] = None
    ) -> TradeSignal:
        signal = normalize_signal({
            "symbol": symbol,
            "type": type,
            "entry": entry,
            "sl": sl,
            "tp": tp,
            "text": text
        })

        try:
            async with self.database.session() as session:
                record = TradeSignalModel(
                    symbol=signal.symbol,
                    type=signal.type.value,
                    entry=signal.entry,
                    sl=signal.sl,
                    tp=signal.tp,
                    text=signal.text
                )
                session.add(record)
                await session.commit()

            logger.debug(
                f"Trade signal stored: {record.id}",
                extra={
                    "component": "repository",
                    "signal_id": record.id,
                    "symbol": record.symbol
                }
            )
            return self._to_trade_signal(record)

        except SQLAlchemyError as e:
            logger.error(
                f"Failed to store trade signal: {e}",
                extra={"component": "repository", "symbol": signal.symbol, "error": str(e)}
            )
            raise PersistenceError(str(e)) from e

    async def list_messages(self, page: int = 1, limit: int = 100) -> Tuple[List[Message], int]:
        page = max(page, 1)
        limit = min(limit, SQL_INTEGER_MAX)
        offset = min((page - 1) * limit, SQL_INTEGER_MAX)

        try:
            async with self.database.session() as session:
                total = await session.scalar(select(func.count(MessageModel.id)))
                result = await session.scalars(
                    select(MessageModel)
                    .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
                    .offset(offset)
                    .limit(limit)
                )
                records = result.all()

            return [self._to_message(record) for record in records], int(total or 0)

        except SQLAlchemyError as e:
            logger.error(f"Failed to list messages: {e}", extra={"component": "repository"})
            raise PersistenceError(str(e)) from e

    async def list_message_texts(self, limit: int = 100) -> List[str]:
        try:
            async with self.database.session() as session:
                result = await session.scalars(
                    select(MessageModel.text)
                    .order_by(MessageModel.created_at.desc(), MessageModel.id.desc())
                    .limit(limit)
                )
                return list(result.all())

        except SQLAlchemyError as e:
            logger.error(f"Failed to list message texts: {e}", extra={"component": "repository"})
            raise PersistenceError(str(e)) from e

    async def list_trade_signals(self, limit: int = 100) -> List[TradeSignal]:
        try:
            async with self.database.session() as session:
                result = await session.scalars(
                    select(TradeSignalModel)
                    .order_by(TradeSignalModel.created_at.desc(), TradeSignalModel.id.desc())
                    .limit(limit)
                )
                records = result.all()

            return [self._to_trade_signal(record) for record in records]

        except SQLAlchemyError as e:
            logger.error(f"Failed to list trade signals: {e}", extra={"component": "repository"})
            raise PersistenceError(str(e)) from e

    async def count_messages(self) -> int:
        return await self._count(MessageModel)

    async def count_trade_signals(self) -> int:
        return await self._count(TradeSignalModel)

    async def check_health(self) -> bool:
        return await self.database.ping()

    async def _count(self, model) -> int:
        try:
            async with self.database.session() as session:
                total = await session.scalar(select(func.count(model.id)))
            return int(total or 0)

        except SQLAlchemyError as e:
            logger.error(f"Failed to count {model.__tablename__}: {e}")
            raise PersistenceError(str(e)) from e

    @staticmethod
    def _to_message(record: MessageModel) -> Message:
        return Message(
            id=record.id,
            text=record.text,
            user_id=record.user_id,
            chat_id=record.chat_id,
            created_at=record.created_at
        )

    @staticmethod
    def _to_trade_signal(record: TradeSignalModel) -> TradeSignal:
        return TradeSignal(
            id=record.id,
            symbol=record.symbol,
            type=record.type,
            entry=record.entry,
            sl=record.sl,
            tp=record.tp,
            text=record.text,
            created_at=record.created_at
        )
