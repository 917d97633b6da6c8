from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, TypeDecorator, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from foundry.utils import new_id, utcnow


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes; SQLite hands back naive values otherwise."""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    pass


class Venture(Base):
    __tablename__ = "ventures"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(300), default="")
    problem_statement: Mapped[str] = mapped_column(Text, default="")
    solution_statement: Mapped[str] = mapped_column(Text, default="")
    target_customer: Mapped[str] = mapped_column(Text, default="")
    offer_description: Mapped[str] = mapped_column(Text, default="")
    revenue_model: Mapped[str] = mapped_column(Text, default="")
    distribution_channel: Mapped[str] = mapped_column(Text, default="")
    estimated_costs_json: Mapped[str] = mapped_column(Text, default="{}")  # {"startup": n, "monthly": n}
    advantage: Mapped[str] = mapped_column(Text, default="")
    entity_type: Mapped[str] = mapped_column(String(20), default="NONE")  # NONE | SOLE_PROP | LLC | CORP
    entity_state: Mapped[str] = mapped_column(String(100), default="")
    entity_skipped: Mapped[bool] = mapped_column(Boolean, default=False)
    ein_obtained: Mapped[bool] = mapped_column(Boolean, default=False)
    bank_account_opened: Mapped[bool] = mapped_column(Boolean, default=False)
    gate_flags_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    artifacts: Mapped[list[Artifact]] = relationship(
        "Artifact", back_populates="venture", order_by="Artifact.seq",
    )


class PhaseStart(Base):
    __tablename__ = "phase_starts"
    __table_args__ = (UniqueConstraint("venture_id", "phase_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    venture_id: Mapped[str] = mapped_column(String(32), ForeignKey("ventures.id"), nullable=False)
    phase_number: Mapped[int] = mapped_column(Integer, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class Artifact(Base):
    __tablename__ = "artifacts"

    # seq gives a stable creation order independent of the opaque id
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, default=new_id)
    venture_id: Mapped[str] = mapped_column(String(32), ForeignKey("ventures.id"), nullable=False, index=True)
    phase_number: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    content_json: Mapped[str] = mapped_column(Text, default="{}")
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    venture: Mapped[Venture] = relationship("Venture", back_populates="artifacts")


class ArtifactVersion(Base):
    __tablename__ = "artifact_versions"
    __table_args__ = (UniqueConstraint("artifact_id", "version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artifact_id: Mapped[str] = mapped_column(String(32), ForeignKey("artifacts.id"), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class ShareRecord(Base):
    __tablename__ = "share_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    artifact_id: Mapped[str] = mapped_column(String(32), ForeignKey("artifacts.id"), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class QuotaCounter(Base):
    __tablename__ = "quota_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope_key: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    limit: Mapped[int] = mapped_column("quota_limit", Integer, nullable=False)
    window_key: Mapped[str] = mapped_column(String(20), default="")  # UTC date for venture-daily, "" for trial


class TrialSession(Base):
    __tablename__ = "trial_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    messages_json: Mapped[str] = mapped_column(Text, default="[]")
    messages_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    claimed_by_user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class Conversation(Base):
    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    venture_id: Mapped[str] = mapped_column(String(32), ForeignKey("ventures.id"), nullable=False, index=True)
    phase_number: Mapped[int] = mapped_column(Integer, nullable=False)
    messages_json: Mapped[str] = mapped_column(Text, default="[]")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
