# backend/models/users.py
from sqlalchemy import Column, Integer, String
from database import Base

# Represents a shopper or seller account. Credentials and profile details live
# with the identity provider; checkout only needs who the caller is.
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False, index=True)
    role = Column(String, nullable=False, default="customer")
