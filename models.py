import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import relationship
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, Text, DateTime, JSON
from database import Base


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    # Identity-provider subject id, not store-assigned
    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=True)
    email = Column(String, index=True, nullable=True)
    avatar_src = Column(String, nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Candidate profile
    phone_number = Column(String, nullable=True)
    linkedin_url = Column(String, nullable=True)
    interested_roles = Column(Text, nullable=True)
    exploration_phase = Column(String, nullable=True)
    referral_source = Column(String, nullable=True)

    applications = relationship("Application", back_populates="user", passive_deletes=True)


class Job(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True, index=True, default=new_id)
    client_name = Column(String, nullable=False, index=True)
    position_name = Column(String, nullable=False)
    location = Column(String, nullable=False)
    exp_min = Column(Integer, nullable=False, default=0)
    exp_max = Column(Integer, nullable=True)  # NULL means unbounded
    tech_stack = Column(JSON, nullable=False, default=list)
    domain = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active", index=True)
    number_of_positions = Column(Integer, nullable=False, default=1)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    applications = relationship("Application", back_populates="job", passive_deletes=True)


class Application(Base):
    __tablename__ = "applications"

    id = Column(String, primary_key=True, index=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    job_id = Column(String, ForeignKey("jobs.id"), nullable=False, index=True)
    applied_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")

    user = relationship("User", back_populates="applications")
    job = relationship("Job", back_populates="applications")


class Activity(Base):
    __tablename__ = "activities"

    id = Column(String, primary_key=True, index=True, default=new_id)
    type = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    data = Column(JSON, nullable=False, default=dict)
