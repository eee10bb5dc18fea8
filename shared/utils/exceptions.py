"""Errores del dominio de tickets con un tipo distinguible por máquina"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    MALFORMED_SCAN = "malformed_scan"  # El texto escaneado no es un payload nuestro
    UNKNOWN_TICKET = "unknown_ticket"  # Payload válido sin ticket en el store
    STORE_UNAVAILABLE = "store_unavailable"
    OUT_OF_RESOURCES = "out_of_resources"  # Memoria agotada durante un batch
    DECODE_FAILURE = "decode_failure"  # Imagen de export no decodificable
    NOTHING_EXPORTED = "nothing_exported"
    CANCELLED = "cancelled"


class TicketingError(Exception):
    """Error base: mensaje corto para humanos + kind para máquinas"""

    kind: ErrorKind = ErrorKind.STORE_UNAVAILABLE

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class StoreUnavailableError(TicketingError):
    kind = ErrorKind.STORE_UNAVAILABLE


class OutOfResourcesError(TicketingError):
    kind = ErrorKind.OUT_OF_RESOURCES


class DecodeFailureError(TicketingError):
    kind = ErrorKind.DECODE_FAILURE


class NothingExportedError(TicketingError):
    kind = ErrorKind.NOTHING_EXPORTED
