"""Bulk job import from operator supplied CSV files.

Parsing is all-or-nothing: a file either yields a complete list of validated
drafts or raises ``FormatError`` before anything is written. Persisting the
drafts is incremental, see ``import_drafts``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterator, List, Optional, Sequence

import structlog
from pydantic import ValidationError

import schemas
from errors import FormatError, ImportAborted

logger = structlog.get_logger(__name__)

EXPECTED_HEADERS = (
    "Client Name",
    "Position Name",
    "Min Exp",
    "Max Exp",
    "Location",
    "Tech Stack",
    "Domain",
    "Number of positions",
)

_LINE_BREAK = re.compile(r"\r?\n")
_INTEGER = re.compile(r"^[+-]?\d+$")


@dataclass(frozen=True)
class ImportProgress:
    processed: int
    total: int

    @property
    def done(self) -> bool:
        return self.processed >= self.total


def split_fields(row: str) -> List[str]:
    """Split one CSV row on commas outside double quotes.

    Quote characters only toggle the inside-quotes state and never reach the
    returned values, which are stripped of surrounding whitespace.
    """
    values = []
    current = []
    inside_quotes = False
    for char in row:
        if char == '"':
            inside_quotes = not inside_quotes
        elif char == "," and not inside_quotes:
            values.append("".join(current).strip())
            current = []
        else:
            current.append(char)
    values.append("".join(current).strip())
    return values


def _parse_int(value: str) -> Optional[int]:
    if _INTEGER.match(value):
        return int(value)
    return None


def _row_to_draft(values: List[str], line: int, created_at: datetime) -> schemas.JobDraft:
    if len(values) != len(EXPECTED_HEADERS):
        raise FormatError(
            f"expected {len(EXPECTED_HEADERS)} columns, found {len(values)}", line=line
        )
    client, position, min_exp, max_exp, location, tech_stack, domain, openings = values

    exp_min = _parse_int(min_exp) if min_exp else 0
    if exp_min is None:
        raise FormatError(f"Min Exp must be a whole number, got {min_exp!r}", line=line)
    number_of_positions = _parse_int(openings) if openings else 1
    if number_of_positions is None:
        raise FormatError(
            f"Number of positions must be a whole number, got {openings!r}", line=line
        )

    try:
        return schemas.JobDraft(
            client_name=client,
            position_name=position,
            location=location,
            exp_min=exp_min,
            exp_max=_parse_int(max_exp),
            tech_stack=schemas.split_tech_stack(tech_stack),
            domain=domain,
            number_of_positions=number_of_positions,
            status="active",
            created_at=created_at,
            total_applications=0,
        )
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'row'}: {error['msg']}"
            for error in exc.errors()
        )
        raise FormatError(problems, line=line) from exc


def parse_jobs_csv(raw_text: str, now: Optional[datetime] = None) -> List[schemas.JobDraft]:
    """Parse an import file into job drafts.

    Raises FormatError if the header row differs from ``EXPECTED_HEADERS`` in
    any way other than surrounding whitespace, or if any row is malformed.
    """
    created_at = now or datetime.now(timezone.utc)
    rows = _LINE_BREAK.split(raw_text.lstrip("\ufeff"))

    headers = tuple(cell.strip() for cell in rows[0].split(","))
    if headers != EXPECTED_HEADERS:
        raise FormatError(
            "Invalid CSV format. Please ensure headers match the required format: "
            + ",".join(EXPECTED_HEADERS)
        )

    drafts = []
    for line, row in enumerate(rows[1:], start=2):
        if not row.strip():
            continue
        drafts.append(_row_to_draft(split_fields(row), line, created_at))

    logger.info("Parsed job import file", rows=len(drafts))
    return drafts


def import_drafts(
    drafts: Sequence[schemas.JobDraft],
    persist: Callable[[schemas.JobDraft], str],
) -> Iterator[ImportProgress]:
    """Persist drafts one at a time, yielding progress after each success.

    The first failure raises ImportAborted carrying how many drafts were
    written. Nothing already persisted is rolled back.
    """
    total = len(drafts)
    for processed, draft in enumerate(drafts):
        try:
            persist(draft)
        except Exception as exc:
            logger.error(
                "Job import aborted",
                processed=processed,
                total=total,
                client_name=draft.client_name,
                position_name=draft.position_name,
                exc_info=True,
            )
            raise ImportAborted(processed, total, exc) from exc
        yield ImportProgress(processed + 1, total)
