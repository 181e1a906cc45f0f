"""
Key-value settings used to distribute client configuration
(contract addresses/ABIs, content store URL).
"""

from sqlalchemy import Column, String, Text

from rxledger.db.postgres import Base


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)
