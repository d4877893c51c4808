"""
Database - SQLAlchemy-backed EngineStore.

Profiles, exchanges and reviews are stored as JSON payloads next to the
indexed columns the engine filters on. Profile counters and ratings live
in their own columns and are only ever changed with relative UPDATEs
inside ``apply``'s transaction, so concurrent writers cannot lose updates.
Exchange rows carry a version column checked on every write.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    create_engine,
    func,
    or_,
)
from sqlalchemy.exc import ArgumentError, IntegrityError, OperationalError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from skillswap.core.errors import (
    AlreadyExists,
    ConfigError,
    InvalidTransition,
    NotFound,
    Unavailable,
)
from skillswap.core.models import (
    Changeset,
    Exchange,
    ExchangeStatus,
    ModerationStatus,
    ProfileRole,
    Rating,
    Review,
    SkillProfile,
    from_record,
    to_record,
)

logger = logging.getLogger(__name__)

Base = declarative_base()


# ============ Table Definitions ============

class ProfileRow(Base):
    """Skill profile; counters and rating are authoritative here, not in payload."""
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    profile_id = Column(String(64), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    institution = Column(String(200), default="", index=True)
    region = Column(String(100), default="", index=True)
    role = Column(String(20), default=ProfileRole.USER.value)
    is_active = Column(Boolean, default=True, index=True)
    rating_mean = Column(Float, default=0.0)
    rating_count = Column(Integer, default=0)
    active_exchanges = Column(Integer, default=0)
    completed_exchanges = Column(Integer, default=0)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False)

    def to_model(self) -> SkillProfile:
        profile = from_record(SkillProfile, self.payload)
        profile.is_active = bool(self.is_active)
        profile.role = ProfileRole(self.role)
        profile.rating = Rating(mean=self.rating_mean or 0.0, count=self.rating_count or 0)
        profile.active_exchanges = self.active_exchanges or 0
        profile.completed_exchanges = self.completed_exchanges or 0
        return profile


class ExchangeRow(Base):
    __tablename__ = "exchanges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exchange_id = Column(String(64), unique=True, nullable=False, index=True)
    requester_id = Column(String(64), nullable=False, index=True)
    provider_id = Column(String(64), nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)
    deadline = Column(DateTime, nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)

    def to_model(self) -> Exchange:
        exchange = from_record(Exchange, self.payload)
        exchange.version = self.version
        return exchange


class ReviewRow(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint(
            "reviewer_id", "reviewee_id", "exchange_id", name="uq_review_direction",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    review_id = Column(String(64), unique=True, nullable=False, index=True)
    reviewer_id = Column(String(64), nullable=False, index=True)
    reviewee_id = Column(String(64), nullable=False, index=True)
    exchange_id = Column(String(64), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    moderation_status = Column(String(20), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)

    def to_model(self) -> Review:
        return from_record(Review, self.payload)


def _naive_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=None) if moment.tzinfo else moment


# ============ Store ============

class SQLStore:
    """
    EngineStore over any SQLAlchemy URL (SQLite by default).

    Usage::

        store = SQLStore("sqlite:///data/skillswap.db")
        await store.apply(changeset)
    """

    def __init__(self, database_url: str = "sqlite://"):
        try:
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                self._engine = create_engine(
                    database_url,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            elif database_url.startswith("sqlite"):
                self._engine = create_engine(
                    database_url, connect_args={"check_same_thread": False},
                )
            else:
                self._engine = create_engine(database_url, pool_pre_ping=True)
        except ArgumentError as exc:
            raise ConfigError(f"Invalid database URL {database_url!r}: {exc}") from exc

        try:
            Base.metadata.create_all(self._engine)
        except OperationalError as exc:
            raise Unavailable(f"Cannot open database {database_url!r}: {exc}") from exc
        self._session_factory = sessionmaker(bind=self._engine)
        logger.info("Database initialized at %s", self._engine.url)

    def _session(self):
        return self._session_factory()

    def dispose(self) -> None:
        self._engine.dispose()

    # ============ Profiles ============

    async def get_profile(self, profile_id: str) -> Optional[SkillProfile]:
        session = self._session()
        try:
            row = session.query(ProfileRow).filter(
                ProfileRow.profile_id == profile_id
            ).first()
            return row.to_model() if row else None
        except OperationalError as exc:
            raise Unavailable(f"Profile lookup failed: {exc}") from exc
        finally:
            session.close()

    async def list_profiles(self, active_only: bool = True) -> list[SkillProfile]:
        session = self._session()
        try:
            query = session.query(ProfileRow)
            if active_only:
                query = query.filter(ProfileRow.is_active.is_(True))
            return [row.to_model() for row in query.order_by(ProfileRow.id).all()]
        except OperationalError as exc:
            raise Unavailable(f"Profile listing failed: {exc}") from exc
        finally:
            session.close()

    async def save_profile(self, profile: SkillProfile) -> SkillProfile:
        session = self._session()
        try:
            row = session.query(ProfileRow).filter(
                ProfileRow.profile_id == profile.profile_id
            ).first()
            if row is None:
                row = ProfileRow(
                    profile_id=profile.profile_id,
                    rating_mean=profile.rating.mean,
                    rating_count=profile.rating.count,
                    active_exchanges=profile.active_exchanges,
                    completed_exchanges=profile.completed_exchanges,
                    created_at=_naive_utc(profile.created_at),
                    is_active=profile.is_active,
                )
                session.add(row)
            row.display_name = profile.display_name
            row.institution = profile.institution
            row.region = profile.region
            row.role = profile.role.value
            row.payload = to_record(profile)
            session.commit()
            session.refresh(row)
            logger.info("Saved profile: %s", profile.profile_id)
            return row.to_model()
        except OperationalError as exc:
            session.rollback()
            raise Unavailable(f"Saving profile failed: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    async def deactivate_profile(self, profile_id: str) -> bool:
        session = self._session()
        try:
            updated = session.query(ProfileRow).filter(
                ProfileRow.profile_id == profile_id
            ).update({ProfileRow.is_active: False}, synchronize_session=False)
            session.commit()
            if updated:
                logger.info("Profile %s deactivated", profile_id)
            return bool(updated)
        except OperationalError as exc:
            session.rollback()
            raise Unavailable(f"Deactivating profile failed: {exc}") from exc
        finally:
            session.close()

    # ============ Exchanges ============

    async def get_exchange(self, exchange_id: str) -> Optional[Exchange]:
        session = self._session()
        try:
            row = session.query(ExchangeRow).filter(
                ExchangeRow.exchange_id == exchange_id
            ).first()
            return row.to_model() if row else None
        except OperationalError as exc:
            raise Unavailable(f"Exchange lookup failed: {exc}") from exc
        finally:
            session.close()

    async def list_exchanges(
        self,
        profile_id: Optional[str] = None,
        role: str = "all",
        status: Optional[ExchangeStatus] = None,
    ) -> list[Exchange]:
        session = self._session()
        try:
            query = session.query(ExchangeRow)
            if profile_id is not None:
                if role == "requested":
                    query = query.filter(ExchangeRow.requester_id == profile_id)
                elif role == "providing":
                    query = query.filter(ExchangeRow.provider_id == profile_id)
                else:
                    query = query.filter(or_(
                        ExchangeRow.requester_id == profile_id,
                        ExchangeRow.provider_id == profile_id,
                    ))
            if status is not None:
                query = query.filter(ExchangeRow.status == status.value)
            rows = query.order_by(ExchangeRow.created_at.desc()).all()
            return [row.to_model() for row in rows]
        except OperationalError as exc:
            raise Unavailable(f"Exchange listing failed: {exc}") from exc
        finally:
            session.close()

    # ============ Reviews ============

    async def get_review(self, review_id: str) -> Optional[Review]:
        session = self._session()
        try:
            row = session.query(ReviewRow).filter(
                ReviewRow.review_id == review_id
            ).first()
            return row.to_model() if row else None
        except OperationalError as exc:
            raise Unavailable(f"Review lookup failed: {exc}") from exc
        finally:
            session.close()

    async def list_reviews(
        self,
        reviewee_id: Optional[str] = None,
        exchange_id: Optional[str] = None,
    ) -> list[Review]:
        session = self._session()
        try:
            query = session.query(ReviewRow)
            if reviewee_id is not None:
                query = query.filter(ReviewRow.reviewee_id == reviewee_id)
            if exchange_id is not None:
                query = query.filter(ReviewRow.exchange_id == exchange_id)
            rows = query.order_by(ReviewRow.created_at.desc()).all()
            return [row.to_model() for row in rows]
        except OperationalError as exc:
            raise Unavailable(f"Review listing failed: {exc}") from exc
        finally:
            session.close()

    # ============ Transactional Apply ============

    def _write_exchange(self, session, exchange: Exchange) -> None:
        record = to_record(exchange)
        record["version"] = exchange.version + 1
        if exchange.version == 0:
            session.add(ExchangeRow(
                exchange_id=exchange.exchange_id,
                requester_id=exchange.requester_id,
                provider_id=exchange.provider_id,
                status=exchange.status.value,
                deadline=_naive_utc(exchange.deadline),
                version=1,
                payload=record,
                created_at=_naive_utc(exchange.created_at),
            ))
            return

        updated = session.query(ExchangeRow).filter(
            ExchangeRow.exchange_id == exchange.exchange_id,
            ExchangeRow.version == exchange.version,
        ).update(
            {
                ExchangeRow.status: exchange.status.value,
                ExchangeRow.version: exchange.version + 1,
                ExchangeRow.payload: record,
            },
            synchronize_session=False,
        )
        if updated == 0:
            raise InvalidTransition(
                f"Exchange {exchange.exchange_id} was modified concurrently"
            )

    def _write_review(self, session, review: Review) -> None:
        row = session.query(ReviewRow).filter(
            ReviewRow.review_id == review.review_id
        ).first()
        if row is None:
            row = ReviewRow(
                review_id=review.review_id,
                reviewer_id=review.reviewer_id,
                reviewee_id=review.reviewee_id,
                exchange_id=review.exchange_id,
                rating=review.rating,
                created_at=_naive_utc(review.created_at),
            )
            session.add(row)
        row.moderation_status = review.moderation.status.value
        row.payload = to_record(review)

    async def apply(self, changeset: Changeset) -> None:
        """Commit every write in ``changeset`` in a single transaction."""
        session = self._session()
        try:
            for exchange in changeset.exchanges:
                self._write_exchange(session, exchange)
            for review in changeset.reviews:
                self._write_review(session, review)
            session.flush()

            for profile_id, delta in changeset.counter_deltas.items():
                updated = session.query(ProfileRow).filter(
                    ProfileRow.profile_id == profile_id
                ).update(
                    {
                        ProfileRow.active_exchanges:
                            ProfileRow.active_exchanges + delta.active,
                        ProfileRow.completed_exchanges:
                            ProfileRow.completed_exchanges + delta.completed,
                    },
                    synchronize_session=False,
                )
                if updated == 0:
                    raise NotFound(f"Profile {profile_id} not found")

            for profile_id, rating in changeset.ratings.items():
                updated = session.query(ProfileRow).filter(
                    ProfileRow.profile_id == profile_id
                ).update(
                    {
                        ProfileRow.rating_mean: rating.mean,
                        ProfileRow.rating_count: rating.count,
                    },
                    synchronize_session=False,
                )
                if updated == 0:
                    raise NotFound(f"Profile {profile_id} not found")

            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise AlreadyExists(f"Duplicate record: {exc.orig}") from exc
        except OperationalError as exc:
            session.rollback()
            raise Unavailable(f"Commit failed: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        for exchange in changeset.exchanges:
            exchange.version += 1

    # ============ Reporting ============

    async def exchange_report(self) -> dict[str, Any]:
        session = self._session()
        try:
            counts = dict(
                session.query(ExchangeRow.status, func.count(ExchangeRow.id))
                .group_by(ExchangeRow.status)
                .all()
            )
            total_reviews = session.query(func.count(ReviewRow.id)).scalar() or 0
            approved_count, approved_avg = session.query(
                func.count(ReviewRow.id), func.avg(ReviewRow.rating),
            ).filter(
                ReviewRow.moderation_status == ModerationStatus.APPROVED.value
            ).one()
            active_profiles = session.query(func.count(ProfileRow.id)).filter(
                ProfileRow.is_active.is_(True)
            ).scalar() or 0
        except OperationalError as exc:
            raise Unavailable(f"Report query failed: {exc}") from exc
        finally:
            session.close()

        return {
            "total_exchanges": sum(counts.values()),
            "by_status": {s.value: counts.get(s.value, 0) for s in ExchangeStatus},
            "total_reviews": total_reviews,
            "approved_reviews": approved_count or 0,
            "average_rating": round(float(approved_avg), 2) if approved_avg else 0.0,
            "active_profiles": active_profiles,
        }
