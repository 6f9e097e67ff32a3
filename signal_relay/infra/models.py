"""
ORM tables for messages and trade signals.
No foreign key links the two tables.
"""

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

from ..domain.schema import utc_now


Base = declarative_base()


class MessageModel(Base):
    """Message text captured from the chat or posted to the API."""
    __tablename__ = "Message"

    id = Column(Integer, primary_key=True, autoincrement=True)
    text = Column(Text, nullable=False)
    user_id = Column("userId", String(64), nullable=True)
    chat_id = Column("chatId", String(64), nullable=True)
    created_at = Column("createdAt", DateTime(timezone=True), nullable=False, default=utc_now)


class TradeSignalModel(Base):
    """Trade signal submitted through the API."""
    __tablename__ = "TradeSignal"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(32), nullable=False)
    type = Column(String(16), nullable=False)
    entry = Column(Float, nullable=False)
    sl = Column(Float, nullable=False)
    tp = Column(Float, nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column("createdAt", DateTime(timezone=True), nullable=False, default=utc_now)


# Newest-first listings order by (createdAt, id)
Index("idx_message_created", MessageModel.created_at, MessageModel.id)
Index("idx_trade_signal_created", TradeSignalModel.created_at, TradeSignalModel.id)
