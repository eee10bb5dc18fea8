"""Modelos SQLAlchemy del store de tickets"""
from sqlalchemy import Column, String, Integer, DateTime, Uuid
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payload = Column(String, unique=True, index=True, nullable=False)  # Deep link completo, única clave de validación
    token = Column(String(24), nullable=False)
    reference = Column(String, nullable=False)  # Solo para mostrar/imprimir
    # Metadata del evento copiada en cada ticket (no hay entidad Event)
    event_name = Column(String, nullable=False, index=True)
    event_date = Column(String, nullable=True, index=True)
    start_time = Column(String, nullable=True)
    end_time = Column(String, nullable=True)
    place = Column(String, nullable=True)
    sequence_number = Column(Integer, nullable=False)
    control_count = Column(Integer, nullable=False, default=0, server_default="0")
    status = Column(String, nullable=False, default="valid", server_default="valid")  # valid, OK
    first_validated_at = Column(DateTime(timezone=True), nullable=True)  # Hora del servidor
    first_validated_at_client = Column(DateTime(timezone=True), nullable=True)  # Hora del cliente
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
