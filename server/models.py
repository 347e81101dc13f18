"""SQLAlchemy models for stored location samples and runtime settings."""

import datetime
from sqlalchemy import Column, Integer, Float, String, DateTime

from database import Base


class Location(Base):
    """One GPS ping of the tracked subject.

    ``timestamp`` is the device time in epoch seconds; rows are only ever read
    back in ascending timestamp order.
    """

    __tablename__ = "locations"

    id = Column(Integer, primary_key=True, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    timestamp = Column(Integer, nullable=False, index=True)
    altitude = Column(Float, nullable=True)
    horizontal_accuracy = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    city = Column(String, nullable=True)
    address = Column(String, nullable=True)
    timezone = Column(String, nullable=True)
    received_at = Column(DateTime, default=datetime.datetime.utcnow)


class Config(Base):
    """Key/value settings editable at runtime (analytics defaults)."""

    __tablename__ = "config"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
