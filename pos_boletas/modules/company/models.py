from pos_boletas.database.database import Base
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    rut = Column(String(12), unique=True, index=True, nullable=False)  # NNNNNNNN-D
    business_name = Column(String(100), nullable=False)  # Razón social
    activity = Column(String(80), nullable=True)  # Giro
    address = Column(String, nullable=True)
    commune = Column(String(50), nullable=True)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    cafs = relationship("Caf", back_populates="company")
