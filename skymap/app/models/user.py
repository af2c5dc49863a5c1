"""
User database model.

Users are the actors of the courier platform: admins, staff, riders and
business accounts. Credentials live with the auth collaborator.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.sql import func
from skymap.app.db.session import Base
from skymap.app.models.enums import UserRole


class User(Base):
    """
    User model.

    Riders must carry a phone number to receive assignment SMS.
    Business users are linked to the business they act for.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(30), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    role = Column(Enum(UserRole), default=UserRole.RIDER, nullable=False, index=True)

    # Business accounts act on behalf of exactly one business
    business_id = Column(Integer, ForeignKey('businesses.id'), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.name}', role='{self.role.value}')>"
