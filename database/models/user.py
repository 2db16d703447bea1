from sqlalchemy import Column, Integer, String, DateTime, Boolean, CheckConstraint
from sqlalchemy.sql import func
from database.base import Base


class User(Base):
    """Player account with a coin balance"""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("coins >= 0", name="ck_users_coins_non_negative"),
    )

    id = Column(Integer, primary_key=True)
    username = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    role = Column(String, nullable=False, default="USER")  # USER, ADMIN, SHOP_OWNER

    # House accounts an admin seats to fill lobbies; always count as ready
    is_bot = Column(Boolean, nullable=False, default=False, index=True)

    # Balance, integer coins only
    coins = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, server_default=func.now())

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"

    def __repr__(self):
        return f"<User #{self.id} ({self.email})>"
