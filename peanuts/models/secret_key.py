from sqlalchemy import Column, String

from peanuts.models.base import Base


class SecretKey(Base):
    __tablename__ = "secret_keys"

    secret_key = Column(String, primary_key=True)


__all__ = ["SecretKey"]
