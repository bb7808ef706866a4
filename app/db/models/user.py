# app/db/models/user.py
from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from app.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)  # full name
    role = Column(String, nullable=False, default="customer", server_default="customer")

    phone = Column(String, nullable=True)
    address = Column(String, nullable=True)
    exact_location = Column(String, nullable=True)  # "lat,lng"

    services = relationship(
        "Service",
        back_populates="provider",
        lazy="selectin"
    )

    availabilities = relationship("ProviderAvailability", back_populates="provider", lazy="selectin")
