from datetime import datetime, timezone

import pytest

import schemas
from csv_import import EXPECTED_HEADERS, ImportProgress, import_drafts, parse_jobs_csv, split_fields
from errors import FormatError, ImportAborted

HEADER = "Client Name,Position Name,Min Exp,Max Exp,Location,Tech Stack,Domain,Number of positions"
NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_parses_quoted_fields_and_coerces_numbers():
    raw = HEADER + '\nAcme,"Backend Engineer",2,5,Remote,"Go, Python",FinTech,3'

    drafts = parse_jobs_csv(raw, now=NOW)

    assert len(drafts) == 1
    draft = drafts[0]
    assert draft.client_name == "Acme"
    assert draft.position_name == "Backend Engineer"
    assert draft.exp_min == 2
    assert draft.exp_max == 5
    assert draft.tech_stack == ["Go", "Python"]
    assert draft.domain == "FinTech"
    assert draft.number_of_positions == 3
    assert draft.status == "active"
    assert draft.created_at == NOW
    assert draft.total_applications == 0


def test_missing_column_in_header_is_rejected():
    header = ",".join(EXPECTED_HEADERS[:-1])
    with pytest.raises(FormatError) as exc_info:
        parse_jobs_csv(header + "\nAcme,QA,1,2,Remote,Go,Retail")
    assert "Number of positions" in exc_info.value.message


@pytest.mark.parametrize(
    "header",
    [
        HEADER.replace("Client Name", "client name"),
        HEADER.replace("Min Exp,Max Exp", "Max Exp,Min Exp"),
        HEADER + ",Extra",
    ],
)
def test_header_must_match_exactly(header):
    with pytest.raises(FormatError):
        parse_jobs_csv(header + "\n")


def test_header_cells_may_carry_surrounding_whitespace():
    header = " Client Name , Position Name,Min Exp,Max Exp,Location,Tech Stack,Domain,Number of positions "
    assert parse_jobs_csv(header + "\nAcme,QA,,,Remote,Go,Retail,") != []


def test_crlf_line_endings_and_blank_rows():
    raw = "\r\n".join(
        [
            HEADER,
            "Acme,QA,1,3,Remote,Go,Retail,1",
            "",
            "   ",
            "Globex,SRE,4,,Austin,Kubernetes,Logistics,2",
            "",
        ]
    )

    drafts = parse_jobs_csv(raw)

    assert [d.client_name for d in drafts] == ["Acme", "Globex"]
    assert drafts[0].number_of_positions == 1
    assert drafts[1].tech_stack == ["Kubernetes"]


def test_byte_order_mark_is_ignored():
    drafts = parse_jobs_csv("\ufeff" + HEADER + "\nAcme,QA,1,3,Remote,Go,Retail,1")
    assert len(drafts) == 1


def test_empty_numbers_fall_back_to_defaults():
    draft = parse_jobs_csv(HEADER + "\nAcme,QA,,,Remote,Go,Retail,")[0]
    assert draft.exp_min == 0
    assert draft.exp_max is None
    assert draft.number_of_positions == 1


def test_unparseable_max_exp_means_unbounded():
    draft = parse_jobs_csv(HEADER + "\nAcme,QA,3,lots,Remote,Go,Retail,1")[0]
    assert draft.exp_max is None


def test_bad_min_exp_names_the_line():
    raw = HEADER + "\nAcme,QA,1,2,Remote,Go,Retail,1\nGlobex,SRE,two,5,Austin,Go,Logistics,1"
    with pytest.raises(FormatError) as exc_info:
        parse_jobs_csv(raw)
    assert exc_info.value.line == 3
    assert exc_info.value.message.startswith("Line 3:")


def test_wrong_column_count_is_rejected():
    with pytest.raises(FormatError) as exc_info:
        parse_jobs_csv(HEADER + "\nAcme,QA,1,2,Remote,Go, Python,Retail,1")
    assert "expected 8 columns" in exc_info.value.message


def test_inverted_experience_range_is_rejected():
    with pytest.raises(FormatError):
        parse_jobs_csv(HEADER + "\nAcme,QA,5,2,Remote,Go,Retail,1")


def test_empty_tech_stack_entries_are_dropped():
    draft = parse_jobs_csv(HEADER + '\nAcme,QA,1,2,Remote,"Go,, Rust ,",Retail,1')[0]
    assert draft.tech_stack == ["Go", "Rust"]


def test_split_fields_strips_quotes_and_whitespace():
    assert split_fields(' a ,"b, c", "d" ,') == ["a", "b, c", "d", ""]


def _drafts(count):
    return [
        schemas.JobDraft(
            client_name=f"Client {i}",
            position_name="QA",
            location="Remote",
            exp_min=0,
            tech_stack=["Go"],
            domain="Retail",
            created_at=NOW,
        )
        for i in range(count)
    ]


def test_import_reports_progress_after_each_persist():
    persisted = []

    progress = list(import_drafts(_drafts(3), lambda draft: persisted.append(draft) or "id"))

    assert progress == [ImportProgress(1, 3), ImportProgress(2, 3), ImportProgress(3, 3)]
    assert progress[-1].done
    assert len(persisted) == 3


def test_import_stops_on_first_failure_and_keeps_earlier_rows():
    persisted = []

    def persist(draft):
        if draft.client_name == "Client 2":
            raise RuntimeError("store unavailable")
        persisted.append(draft.client_name)
        return "id"

    seen = []
    with pytest.raises(ImportAborted) as exc_info:
        for progress in import_drafts(_drafts(5), persist):
            seen.append(progress.processed)

    assert seen == [1, 2]
    assert persisted == ["Client 0", "Client 1"]
    assert exc_info.value.processed == 2
    assert exc_info.value.total == 5
    assert "store unavailable" in exc_info.value.message
