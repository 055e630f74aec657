"""CSV export of the candidate table."""

import csv
import io
import logging
from pathlib import Path
from typing import Iterable, List, Union

from leadfinder.models import Candidate

logger = logging.getLogger(__name__)

CSV_HEADERS: List[str] = [
    "Company Name",
    "Contact Name",
    "Address",
    "Phone",
    "Email",
    "Website",
    "Description",
    "Status",
    "Date Found/Updated",
    "Email Thread ID",
    "Area Searched",
    "Business Type",
]


def to_row(candidate: Candidate) -> List[str]:
    return [
        candidate.company_name,
        candidate.contact_name,
        candidate.address,
        candidate.phone,
        candidate.email,
        candidate.best_website,
        candidate.description,
        candidate.status.value,
        candidate.date_found,
        candidate.email_thread_id,
        candidate.area_searched,
        candidate.business_type,
    ]


def to_csv(candidates: Iterable[Candidate]) -> str:
    """Serialize candidates with every cell quoted and embedded quotes doubled."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(CSV_HEADERS)
    for candidate in candidates:
        writer.writerow([cell or "" for cell in to_row(candidate)])
    return buffer.getvalue()


def write_csv(candidates: Iterable[Candidate], path: Union[str, Path]) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    content = to_csv(candidates)
    with target.open("w", encoding="utf-8", newline="") as fh:
        fh.write(content)
    logger.info("Wrote %s", str(target))
    return target
