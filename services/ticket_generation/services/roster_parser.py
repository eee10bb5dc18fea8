"""Lectura del roster CSV para el import de tickets"""
from dataclasses import dataclass
from typing import Iterator, List, Optional
import re

ROSTER_DELIMITER = ";"
ROSTER_FIELDS = 6  # reference;name;date;start;end;place

UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class TicketSpec:
    """Un ticket por crear dentro de un batch"""
    reference: str
    event_name: str
    event_date: Optional[str]
    start_time: Optional[str]
    end_time: Optional[str]
    place: Optional[str]
    sequence_number: int
    filename: str


def safe_file_stem(reference: str) -> str:
    """
    Referencia apta para nombre de archivo

    La referencia viene del roster tal cual; nunca debe poder armar una ruta.
    Todo lo que no sea [A-Za-z0-9._-] pasa a "_" y se cortan las secuencias "..".
    """
    stem = UNSAFE_FILENAME_CHARS.sub("_", reference)
    while ".." in stem:
        stem = stem.replace("..", "_")
    return stem.strip(".") or "ticket"


def iter_roster(text: str) -> Iterator[TicketSpec]:
    """
    Recorrer el roster en orden de archivo

    La primera línea es el header y se descarta. Las líneas vacías o con
    menos de 6 campos se ignoran sin cortar el import; los campos extra
    también se ignoran. Sin comillas: cada línea se parte por ";" tal cual.
    La secuencia cuenta solo las líneas aceptadas.
    """
    lines = text.lstrip("\ufeff").splitlines()

    sequence = 1
    for line in lines[1:]:
        if not line.strip():
            continue
        row = line.split(ROSTER_DELIMITER)
        if len(row) < ROSTER_FIELDS:
            continue
        reference, name, date, start, end, place = (value.strip() for value in row[:ROSTER_FIELDS])
        yield TicketSpec(
            reference=reference,
            event_name=name,
            event_date=date,
            start_time=start,
            end_time=end,
            place=place,
            sequence_number=sequence,
            filename=f"imported_{safe_file_stem(reference)}.png",
        )
        sequence += 1


def parse_roster(text: str) -> List[TicketSpec]:
    return list(iter_roster(text))
