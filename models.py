from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Boolean, Float
from sqlalchemy import Index
from sqlalchemy.orm import relationship
from datetime import datetime

from database import Base


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    target_inr_min = Column(Float, default=2.0, nullable=False)
    target_inr_max = Column(Float, default=3.0, nullable=False)

    medications = relationship("Medication", back_populates="user", cascade="all, delete-orphan")
    reminders = relationship("Reminder", back_populates="user", cascade="all, delete-orphan")
    push_subscriptions = relationship("PushSubscription", back_populates="user", cascade="all, delete-orphan")
    pt_tests = relationship("PtTest", back_populates="user", cascade="all, delete-orphan")


class PtTest(Base):
    __tablename__ = "pt_tests"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    test_date = Column(Date, nullable=False)
    inr_value = Column(Float, nullable=False)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    user = relationship("User", back_populates="pt_tests")


class Medication(Base):
    __tablename__ = "medications"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    dosage = Column(String, nullable=False)
    quantity = Column(String, nullable=False, default="1 tablet")
    instructions = Column(String, nullable=True)
    user = relationship("User", back_populates="medications")


class Reminder(Base):
    __tablename__ = "reminders"
    __table_args__ = (
        # Sweep reads every user's reminders; keep that lookup indexed
        Index("ix_reminder_user_active", "user_id", "active"),
    )
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    medication_id = Column(Integer, ForeignKey("medications.id", ondelete="CASCADE"), nullable=False, index=True)
    time = Column(String, nullable=False)           # HH:MM, host-local wall clock
    days = Column(String, nullable=False)           # comma-separated: "1,2,...,7", weekday names or "daily"
    active = Column(Boolean, default=True, nullable=False)
    notify_before = Column(Integer, default=15, nullable=False)  # minutes of lead time
    user = relationship("User", back_populates="reminders")


class MedicationLog(Base):
    __tablename__ = "medication_logs"
    id = Column(Integer, primary_key=True, index=True)
    reminder_id = Column(Integer, nullable=False, index=True)  # logs outlive deleted reminders
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    taken_at = Column(DateTime, default=datetime.now, nullable=False)
    scheduled = Column(String, nullable=False)
    taken = Column(Boolean, default=True, nullable=False)


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(String, unique=True, nullable=False, index=True)
    p256dh = Column(String, nullable=False)
    auth = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    user = relationship("User", back_populates="push_subscriptions")
