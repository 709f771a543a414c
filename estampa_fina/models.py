from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()

def utcnow():
    return datetime.now(timezone.utc)

# =========================
# DOCUMENTS: one row per (collection, doc_id)
# =========================
class Document(Base):
    __tablename__ = "documents"
    id = Column(Integer, primary_key=True)
    collection = Column(String(60), index=True, nullable=False)   # users / products / orders / ...
    doc_id = Column(String(120), nullable=False)
    data = Column(JSON, default=dict, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("collection", "doc_id", name="uq_document"),)

# =========================
# AUTH ACCOUNTS
# =========================
class Credential(Base):
    __tablename__ = "credentials"
    id = Column(Integer, primary_key=True)
    uid = Column(String(64), unique=True, index=True, nullable=False)
    email = Column(String(160), unique=True, index=True, nullable=False)  # stored lowercase
    password_hash = Column(String(255), nullable=False)
    display_name = Column(String(160), nullable=True)
    photo_url = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
