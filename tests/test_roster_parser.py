from services.ticket_generation.services.roster_parser import parse_roster, safe_file_stem

ROSTER = (
    "ref;nombre;fecha;inicio;fin;lugar\n"
    "A001;Gala;2024-06-01;20:00;23:00;Teatro Municipal\n"
    "A002;Gala;2024-06-01;20:00\n"
    "\n"
    " A003 ; Gala ;2024-06-01; 20:00 ;23:00; Teatro Municipal ;extra\n"
)


def test_parse_roster_skips_header_and_short_lines():
    specs = parse_roster(ROSTER)

    assert [s.reference for s in specs] == ["A001", "A003"]
    assert [s.sequence_number for s in specs] == [1, 2]


def test_parse_roster_trims_fields_and_names_files():
    spec = parse_roster(ROSTER)[1]

    assert spec.event_name == "Gala"
    assert spec.event_date == "2024-06-01"
    assert spec.start_time == "20:00"
    assert spec.end_time == "23:00"
    assert spec.place == "Teatro Municipal"
    assert spec.filename == "imported_A003.png"


def test_parse_roster_strips_bom():
    specs = parse_roster("\ufeffref;nombre;fecha;inicio;fin;lugar\nB1;X;2024-01-01;10:00;11:00;Sala\n")
    assert len(specs) == 1
    assert specs[0].reference == "B1"


def test_header_only_roster_is_empty():
    assert parse_roster("ref;nombre;fecha;inicio;fin;lugar\n") == []
    assert parse_roster("") == []


def test_quotes_are_plain_characters():
    specs = parse_roster(
        "ref;nombre;fecha;inicio;fin;lugar\n"
        'Q1;"Gala;2024-06-01;20:00;23:00;Sala\n'
        'Q2;Gala";2024-06-01;20:00;23:00;Sala\n'
    )

    assert [s.reference for s in specs] == ["Q1", "Q2"]
    assert specs[0].event_name == '"Gala'
    assert specs[1].event_name == 'Gala"'


def test_crlf_roster():
    specs = parse_roster("ref;nombre;fecha;inicio;fin;lugar\r\nC1;Gala;2024-06-01;20:00;23:00;Sala\r\n")
    assert [(s.reference, s.place) for s in specs] == [("C1", "Sala")]


def test_reference_cannot_build_a_path():
    spec = parse_roster("ref;n;d;s;e;p\nx/../../../../escaped;Gala;2025-06-01;19:00;23:00;Hall\n")[0]

    assert spec.reference == "x/../../../../escaped"
    assert "/" not in spec.filename
    assert ".." not in spec.filename
    assert spec.filename.startswith("imported_") and spec.filename.endswith(".png")


def test_safe_file_stem():
    assert safe_file_stem("A-001_b.c") == "A-001_b.c"
    assert safe_file_stem("..\\..\\win") == "____win"
    assert safe_file_stem("..") == "_"
    assert safe_file_stem("") == "ticket"
