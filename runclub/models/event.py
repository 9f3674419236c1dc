import uuid
from sqlalchemy import Column, Integer, String, Float, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from runclub.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=new_id)
    slug = Column(String(200), unique=True, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    date = Column(String(100), nullable=True)
    location = Column(String(300), nullable=True)
    price = Column(Float, nullable=False, default=0)
    max_participants = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    registrations = relationship("EventRegistration", back_populates="event")
    attendees = relationship("Attendee", back_populates="event")

    @property
    def is_free(self) -> bool:
        return not self.price or self.price <= 0
