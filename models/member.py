# models/member.py
"""
Member model - one node of the referral team tree.

parentId is the source of truth. teamPath ("/1/5/9/", root first, self
last), directCount and teamCount are derived and rebuilt by
SqlTeamStore.rebuild_team_paths().
"""
from sqlalchemy import Column, Integer, String, ForeignKey, Index

from models.base import Base, TimestampMixin


class Member(Base, TimestampMixin):
    __tablename__ = 'members'

    id = Column(Integer, primary_key=True)
    level = Column(String(16), nullable=False, default="NORMAL")
    parentId = Column(Integer, ForeignKey('members.id'), nullable=True, index=True)
    status = Column(String(16), nullable=False, default="ACTIVE")

    # Derived index
    teamPath = Column(String, nullable=True, index=True)
    directCount = Column(Integer, nullable=False, default=0)
    teamCount = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('ix_members_parent_level', 'parentId', 'level'),
    )

    def __repr__(self):
        return f"<Member(id={self.id}, level={self.level}, parentId={self.parentId})>"
