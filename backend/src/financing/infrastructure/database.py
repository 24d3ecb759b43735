"""
Database configuration and session management with SQLAlchemy.

Uses async SQLAlchemy for non-blocking database operations.

Design Decisions:
- AsyncSession for non-blocking operations
- Connection pooling with sensible defaults (server databases only)
- Explicit transaction management: one transaction per financing run
- Integer surrogate keys; purchaser id doubles as the tie-break order
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import BigInteger, Boolean, Date, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from financing.config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class CreditorRecord(Base):
    """Creditor issuing invoices, with its maximum acceptable financing rate."""
    __tablename__ = "creditors"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256))
    max_financing_rate_in_bps: Mapped[int] = mapped_column(Integer)


class DebtorRecord(Base):
    __tablename__ = "debtors"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256))


class InvoiceRecord(Base):
    """
    Invoice issued by a creditor to a debtor.
    
    The financed flag is indexed so a run only scans unprocessed invoices.
    """
    __tablename__ = "invoices"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    creditor_id: Mapped[int] = mapped_column(ForeignKey("creditors.id"))
    debtor_id: Mapped[int] = mapped_column(ForeignKey("debtors.id"))
    maturity_date: Mapped[date] = mapped_column(Date)
    value_in_cents: Mapped[int] = mapped_column(BigInteger)
    
    # Set together, exactly once, when the invoice is financed
    early_payment_amount_in_cents: Mapped[int | None] = mapped_column(BigInteger)
    discounted_amount_in_cents: Mapped[int | None] = mapped_column(BigInteger)
    financed: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    
    creditor: Mapped[CreditorRecord] = relationship()
    debtor: Mapped[DebtorRecord] = relationship()


class PurchaserRecord(Base):
    """Purchaser (usually a bank) buying invoices at a discount."""
    __tablename__ = "purchasers"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(256))
    minimum_financing_term_in_days: Mapped[int] = mapped_column(Integer)
    
    financing_settings: Mapped[list["PurchaserFinancingSettingsRecord"]] = relationship(
        back_populates="purchaser",
        cascade="all, delete-orphan",
    )


class PurchaserFinancingSettingsRecord(Base):
    """Annual rate a purchaser charges one creditor."""
    __tablename__ = "purchaser_financing_settings"
    __table_args__ = (
        UniqueConstraint("purchaser_id", "creditor_id", name="uq_purchaser_creditor_settings"),
    )
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    purchaser_id: Mapped[int] = mapped_column(ForeignKey("purchasers.id"), index=True)
    creditor_id: Mapped[int] = mapped_column(ForeignKey("creditors.id"), index=True)
    annual_rate_in_bps: Mapped[int] = mapped_column(Integer)
    
    purchaser: Mapped[PurchaserRecord] = relationship(back_populates="financing_settings")
    creditor: Mapped[CreditorRecord] = relationship()


class FinancingAgreementRecord(Base):
    """
    Link between a financed invoice and the purchaser that financed it.
    
    One agreement per invoice, enforced by the unique invoice_id.
    """
    __tablename__ = "financing_agreements"
    
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc)
    )
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id"), unique=True)
    purchaser_id: Mapped[int] = mapped_column(ForeignKey("purchasers.id"), index=True)
    
    invoice: Mapped[InvoiceRecord] = relationship()
    purchaser: Mapped[PurchaserRecord] = relationship()


# Engine and session factory (initialized lazily)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        options: dict = {"echo": settings.debug}
        if settings.database_backend != "sqlite":
            options.update(pool_size=5, max_overflow=10, pool_timeout=30)
        _engine = create_async_engine(settings.database_url, **options)
        logger.info(f"Database engine created for {settings.database_backend}")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get the session factory for creating database sessions."""
    global _session_factory
    if _session_factory is None:
        engine = get_engine()
        _session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


@asynccontextmanager
async def get_session(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncGenerator[AsyncSession, None]:
    """
    Get a database session, rolled back if the block raises.

    Args:
        factory: Session factory to use (configured database if None)

    Usage:
        async with get_session() as session:
            session.add(record)
            await session.commit()
    """
    factory = factory or get_session_factory()
    session = factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def init_db() -> None:
    """
    Initialize database tables.
    
    Call this on application startup to ensure tables exist.
    In production, use Alembic migrations instead.
    """
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


async def close_db() -> None:
    """Close database connections on shutdown."""
    global _engine, _session_factory
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None
    logger.info("Database connections closed")
