"""
Database models for build history.
"""

from sqlalchemy import Column, String, DateTime, Integer, Text, JSON
from sqlalchemy.sql import func

from pushpipe.db.database import Base

class BuildRecord(Base):
    __tablename__ = "builds"

    build_id = Column(Integer, primary_key=True, autoincrement=False)
    job_id = Column(String(255), nullable=False, index=True)
    repository_id = Column(String(255), nullable=False)
    ref = Column(String(255), nullable=False)
    commit_sha = Column(String(64), nullable=False)
    state = Column(String(50), nullable=False, index=True)
    trigger = Column(JSON, nullable=False)
    stage_results = Column(JSON, nullable=False, default=list)
    error = Column(Text)
    created_at = Column(DateTime(timezone=True))
    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
