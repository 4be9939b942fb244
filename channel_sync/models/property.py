"""
Property Models

Read-only collaborator records for the sync engine: properties, their
rooms, and per-day room availability.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Text, Numeric, ForeignKey, DateTime, Date, Integer, Boolean, JSON, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base


class Property(Base):
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)

    # External identifiers per channel type, e.g. {"booking-com": "1234567"}
    channel_ids = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    rooms = relationship("Room", back_populates="parent_property", cascade="all, delete-orphan")
    channels = relationship("Channel", back_populates="parent_property", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Property {self.name}>"


class Room(Base):
    __tablename__ = "rooms"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    property_id = Column(String(36), ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)

    room_number = Column(String(50), nullable=False)
    room_type = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    max_occupancy = Column(Integer, default=2)
    size = Column(Integer, nullable=True)  # square meters
    amenities = Column(JSON, nullable=False, default=list)
    base_rate = Column(Numeric(10, 2), nullable=False, default=0)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    parent_property = relationship("Property", back_populates="rooms")

    __table_args__ = (
        Index("ix_room_property", "property_id"),
    )

    def __repr__(self):
        return f"<Room {self.room_number} ({self.room_type})>"


class RoomAvailability(Base):
    __tablename__ = "room_availability"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    room_id = Column(String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    available = Column(Boolean, default=True, nullable=False)
    inventory = Column(Integer, nullable=True)

    __table_args__ = (
        UniqueConstraint("room_id", "date", name="uq_room_availability_room_date"),
        Index("ix_room_availability_date", "date"),
    )

    def __repr__(self):
        return f"<RoomAvailability room={self.room_id} {self.date} available={self.available}>"
