from sqlalchemy import Column, DateTime, Integer, String, func

from modgate.core.database import Base


class Module(Base):
    """Catalog entry for an optional, separately billed feature area."""

    __tablename__ = "modules"

    code = Column(String(50), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(String, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
