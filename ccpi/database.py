"""
Database Models for CCPI

Uses SQLAlchemy with async support for PostgreSQL.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column, Integer, String, Float, DateTime, Boolean, Text, Index, select, and_,
)
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.dialects.postgresql import JSONB

from ccpi.calculator import CCPIOutput


Base = declarative_base()


class CCPIReading(Base):
    """
    One evaluated CCPI snapshot
    """
    __tablename__ = 'ccpi_readings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, unique=True, index=True)

    # Composite
    ccpi = Column(Integer, nullable=False, index=True)
    base_ccpi = Column(Integer, nullable=False)
    total_bonus = Column(Integer, nullable=False, default=0)
    certainty = Column(Integer)

    regime_level = Column(Integer, nullable=False, index=True)
    regime_name = Column(String(30), nullable=False)

    # Pillar scores (0-100 each)
    momentum = Column(Float)
    risk_appetite = Column(Float)
    valuation = Column(Float)
    macro = Column(Float)

    active_canaries = Column(Integer, default=0)
    yield_curve_policy = Column(String(10))

    # Serialized detail
    canaries = Column(JSONB)
    crash_amplifiers = Column(JSONB)
    indicators = Column(JSONB)
    defaulted_indicators = Column(JSONB)

    __table_args__ = (
        Index('ix_ccpi_readings_regime_time', 'regime_level', 'timestamp'),
    )

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'ccpi': self.ccpi,
            'baseCCPI': self.base_ccpi,
            'totalBonus': self.total_bonus,
            'certainty': self.certainty,
            'regime': {'level': self.regime_level, 'name': self.regime_name},
            'pillars': {
                'momentum': self.momentum,
                'riskAppetite': self.risk_appetite,
                'valuation': self.valuation,
                'macro': self.macro,
            },
            'activeCanaries': self.active_canaries,
            'canaries': self.canaries or [],
            'crashAmplifiers': self.crash_amplifiers or [],
        }


class Alert(Base):
    """
    Alert history for tracking and analysis
    """
    __tablename__ = 'alerts'

    id = Column(Integer, primary_key=True, autoincrement=True)
    triggered_at = Column(DateTime(timezone=True), nullable=False, index=True)

    alert_type = Column(String(50), nullable=False)  # REGIME_CHANGE, CRASH_AMPLIFIER

    ccpi = Column(Integer)
    regime_level = Column(Integer)
    previous_regime_level = Column(Integer)

    message = Column(Text)

    # Delivery tracking
    discord_sent = Column(Boolean, default=False)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'triggered_at': self.triggered_at.isoformat(),
            'alert_type': self.alert_type,
            'ccpi': self.ccpi,
            'regime_level': self.regime_level,
            'previous_regime_level': self.previous_regime_level,
            'message': self.message,
            'discord_sent': self.discord_sent,
        }


def reading_from_output(output: CCPIOutput) -> CCPIReading:
    """Map a calculator result to a row"""
    data = output.to_dict()
    pillars = data['pillars']
    return CCPIReading(
        timestamp=output.timestamp,
        ccpi=output.ccpi,
        base_ccpi=output.base_ccpi,
        total_bonus=output.total_bonus,
        certainty=output.certainty,
        regime_level=output.regime.level,
        regime_name=output.regime.name,
        momentum=pillars['momentum'],
        risk_appetite=pillars['riskAppetite'],
        valuation=pillars['valuation'],
        macro=pillars['macro'],
        active_canaries=output.active_canaries,
        yield_curve_policy=output.yield_curve_policy.value,
        canaries=data['canaries'],
        crash_amplifiers=data['crashAmplifiers'],
        indicators=data['indicators'],
        defaulted_indicators=data['defaultedIndicators'],
    )


# Database connection management

class Database:
    """
    Async database connection manager
    """

    def __init__(self, database_url: str):
        # Convert postgres:// to postgresql+asyncpg://
        if database_url.startswith('postgres://'):
            database_url = database_url.replace('postgres://', 'postgresql+asyncpg://', 1)
        elif database_url.startswith('postgresql://'):
            database_url = database_url.replace('postgresql://', 'postgresql+asyncpg://', 1)

        self.url = database_url
        self.engine = create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10,
        )

        self.async_session = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def create_tables(self):
        """Create all tables"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def session(self) -> AsyncSession:
        """Get a new session"""
        return self.async_session()

    async def close(self):
        """Close the engine"""
        await self.engine.dispose()


# Repository functions for common operations

async def save_reading(session: AsyncSession, reading: CCPIReading):
    """Save a CCPI reading"""
    session.add(reading)
    await session.commit()


async def get_latest_reading(session: AsyncSession) -> Optional[CCPIReading]:
    """Get the most recent CCPI reading"""
    query = select(CCPIReading).order_by(CCPIReading.timestamp.desc()).limit(1)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def get_readings_for_timerange(
    session: AsyncSession,
    start_time: datetime,
    end_time: Optional[datetime] = None,
) -> list[CCPIReading]:
    """Get CCPI readings within a time range, oldest first"""
    end_time = end_time or datetime.now(timezone.utc)
    query = (
        select(CCPIReading)
        .where(
            and_(
                CCPIReading.timestamp >= start_time,
                CCPIReading.timestamp <= end_time,
            )
        )
        .order_by(CCPIReading.timestamp)
    )

    result = await session.execute(query)
    return list(result.scalars().all())


async def save_alert(session: AsyncSession, alert: Alert):
    """Save an alert"""
    session.add(alert)
    await session.commit()


async def get_recent_alerts(session: AsyncSession, limit: int = 50) -> list[Alert]:
    """Get recent alerts"""
    query = select(Alert).order_by(Alert.triggered_at.desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())
