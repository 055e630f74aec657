import csv
import io

from leadfinder.etl.export import CSV_HEADERS, to_csv, write_csv
from leadfinder.models import BusinessStatus, Candidate


def _candidate(**kwargs):
    defaults = dict(
        id="c1",
        discovery_name="Acme",
        discovery_website="https://acme.test",
        company_name="Acme, Inc.",
        description='He said "hi", then left',
        status=BusinessStatus.EMAILED,
        date_found="2024-05-01",
        area_searched="Austin, TX",
        business_type="Coffee Shops",
    )
    defaults.update(kwargs)
    return Candidate(**defaults)


def test_quotes_are_doubled_and_every_cell_wrapped():
    content = to_csv([_candidate()])
    header, row = content.split("\r\n")[:2]

    assert header == ",".join(f'"{name}"' for name in CSV_HEADERS)
    assert '"He said ""hi"", then left"' in row
    assert row.startswith('"Acme, Inc.","","",')
    assert content.endswith("\r\n")


def test_round_trip_through_csv_reader():
    content = to_csv([_candidate()])
    rows = list(csv.reader(io.StringIO(content, newline="")))

    assert rows[0] == CSV_HEADERS
    record = dict(zip(rows[0], rows[1]))
    assert record["Description"] == 'He said "hi", then left'
    assert record["Company Name"] == "Acme, Inc."
    assert record["Website"] == "https://acme.test"
    assert record["Status"] == "Emailed"
    assert record["Email Thread ID"] == "N/A"


def test_website_falls_back_to_structured_website():
    content = to_csv([_candidate(discovery_website="", website="https://places.test")])
    rows = list(csv.reader(io.StringIO(content, newline="")))
    assert rows[1][CSV_HEADERS.index("Website")] == "https://places.test"


def test_write_csv(tmp_path):
    target = write_csv([_candidate()], tmp_path / "out" / "business_leads.csv")
    assert target.exists()
    assert target.read_bytes().count(b"\r\n") == 2
