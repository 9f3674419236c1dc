from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
from runclub.database import Base
from runclub.models.event import new_id


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), nullable=False, index=True)
    endpoint = Column(String(1000), unique=True, nullable=False)
    keys = Column(JSON, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
