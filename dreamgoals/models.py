"""
SQLAlchemy models

A single `items` table holds every document kind; the document itself is
stored as JSON in its wire (camelCase) form.
"""
from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, UniqueConstraint, text
from sqlalchemy.sql import func

from dreamgoals.database import Base


class Item(Base):
    __tablename__ = "items"
    __table_args__ = (
        # weekly_goal rows are unique per week; ad-hoc ids may repeat across weeks
        UniqueConstraint("user_id", "type", "week_id", "item_id", name="uq_items_user_type_week_item"),
        Index(
            "uq_items_user_type_item",
            "user_id", "type", "item_id",
            unique=True,
            sqlite_where=text("week_id IS NULL"),
            postgresql_where=text("week_id IS NULL"),
        ),
    )

    pk = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(String, nullable=False)
    user_id = Column(String, nullable=False, index=True)
    # dream | weekly_goal | weekly_goal_template | scoring_entry | connect
    type = Column(String, nullable=False, index=True)

    week_id = Column(String, nullable=True)   # weekly_goal only
    year = Column(Integer, nullable=True)     # scoring_entry only
    position = Column(Integer, nullable=False, default=0)

    payload = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Item {self.type}:{self.item_id} user={self.user_id}>"
