# db.py
"""
Database module using SQLAlchemy (SQLite by default).
Stores reports of phishing URLs, detected by a scan or submitted by a user.
"""

import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

DB_FILE = os.getenv("QSSAGE_DB", "qssage.db")
DATABASE_URL = os.getenv("QSSAGE_DATABASE_URL", f"sqlite:///{DB_FILE}")

Base = declarative_base()
engine = None
SessionLocal = sessionmaker(expire_on_commit=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Report(Base):
    __tablename__ = "reports"
    id = Column(Integer, primary_key=True, index=True)
    url = Column(Text, index=True, nullable=False)
    location = Column(Text)
    note = Column(Text)
    source = Column(Text, default="manual")  # "auto" for scan detections
    risk = Column(Text)
    score = Column(Integer)
    detected_at = Column(DateTime, default=_utcnow, index=True)
    dispatched = Column(Boolean, default=False, nullable=False)
    dispatched_at = Column(DateTime)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "location": self.location,
            "note": self.note,
            "source": self.source,
            "risk": self.risk,
            "score": self.score,
            "detected_at": self.detected_at.isoformat() if self.detected_at else None,
            "dispatched": bool(self.dispatched),
            "dispatched_at": self.dispatched_at.isoformat() if self.dispatched_at else None,
        }


def init_db(database_url: Optional[str] = None) -> None:
    global engine
    url = database_url or DATABASE_URL
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args)
    SessionLocal.configure(bind=engine)
    Base.metadata.create_all(bind=engine)


def format_location(location: Any) -> Optional[str]:
    """Store {"lat": .., "lng": ..} as "lat,lng"; free text as is."""
    if location is None or location == "":
        return None
    if isinstance(location, dict):
        if "lat" in location and "lng" in location:
            return f"{location['lat']},{location['lng']}"
        return json.dumps(location, sort_keys=True)
    return str(location)


def save_report(url: str, location: Any = None, note: Optional[str] = None, source: str = "manual",
                risk: Optional[str] = None, score: Optional[int] = None) -> Dict[str, Any]:
    with SessionLocal() as session:
        report = Report(
            url=url,
            location=format_location(location),
            note=note,
            source=source,
            risk=risk,
            score=score,
        )
        session.add(report)
        session.commit()
        session.refresh(report)
        return report.to_dict()


def list_reports() -> List[Dict[str, Any]]:
    with SessionLocal() as session:
        rows = session.query(Report).order_by(Report.detected_at.desc(), Report.id.desc()).all()
        return [r.to_dict() for r in rows]


def get_reports(ids: Iterable[int]) -> List[Dict[str, Any]]:
    ids = list(ids)
    if not ids:
        return []
    with SessionLocal() as session:
        rows = session.query(Report).filter(Report.id.in_(ids)).order_by(Report.id).all()
        return [r.to_dict() for r in rows]


def mark_dispatched(ids: Iterable[int]) -> int:
    ids = list(ids)
    if not ids:
        return 0
    with SessionLocal() as session:
        updated = (
            session.query(Report)
            .filter(Report.id.in_(ids))
            .update({Report.dispatched: True, Report.dispatched_at: _utcnow()}, synchronize_session=False)
        )
        session.commit()
        return updated


def delete_report(report_id: int) -> bool:
    with SessionLocal() as session:
        deleted = session.query(Report).filter(Report.id == report_id).delete()
        session.commit()
        return deleted > 0
