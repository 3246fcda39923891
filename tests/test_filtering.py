from datetime import datetime, timezone

import schemas
from filtering import (
    ALL,
    APPLICATION_FILTER,
    JOB_FILTER,
    USER_FILTER,
    all_facet_options,
    facet_options,
    filter_items,
    reconcile_facets,
    resolve,
    select_facet,
)


def job(client, position, location="Remote", tech=("Python",), domain="Fintech"):
    return {
        "client_name": client,
        "position_name": position,
        "location": location,
        "tech_stack": list(tech),
        "domain": domain,
    }


JOBS = [
    job("Acme", "Backend Engineer", tech=("Python", "Django")),
    job("Acme", "Frontend Engineer", location="Berlin", tech=("React",)),
    job("Globex", "Backend Engineer", location="Austin", tech=("Go",), domain="Logistics"),
    job("Initech", "Data Analyst", tech=("SQL", "Python")),
]


def test_no_filters_returns_everything_in_order():
    assert filter_items(JOBS) == JOBS
    assert filter_items(JOBS, "", {"company": ALL, "position": ALL}) == JOBS


def test_query_is_case_insensitive_substring_over_search_fields():
    assert filter_items(JOBS, "BACKEND") == [JOBS[0], JOBS[2]]
    assert filter_items(JOBS, "berl") == [JOBS[1]]
    assert filter_items(JOBS, "logist") == [JOBS[2]]


def test_query_matches_any_tech_stack_entry():
    assert filter_items(JOBS, "python") == [JOBS[0], JOBS[3]]
    assert filter_items(JOBS, "react") == [JOBS[1]]


def test_facets_require_exact_equality():
    assert filter_items(JOBS, facets={"company": "Acme"}) == [JOBS[0], JOBS[1]]
    assert filter_items(JOBS, facets={"company": "acme"}) == []
    assert filter_items(JOBS, facets={"company": "Acme", "position": "Backend Engineer"}) == [JOBS[0]]


def test_query_and_facets_combine():
    assert filter_items(JOBS, "engineer", {"position": "Backend Engineer"}) == [JOBS[0], JOBS[2]]
    assert filter_items(JOBS, "go", {"company": "Acme"}) == []


def test_filtering_is_idempotent_and_does_not_mutate():
    snapshot = [dict(item) for item in JOBS]
    once = filter_items(JOBS, "engineer", {"company": "Acme"})
    assert filter_items(once, "engineer", {"company": "Acme"}) == once
    assert JOBS == snapshot


def test_result_is_an_ordered_subsequence():
    result = filter_items(JOBS, "e")
    positions = [JOBS.index(item) for item in result]
    assert positions == sorted(positions)


def test_missing_fields_never_match_and_never_raise():
    items = [{"client_name": "Acme"}, {"position_name": None}, {}]
    assert filter_items(items, "acme") == [items[0]]
    assert filter_items(items, facets={"position": "Backend Engineer"}) == []


def test_resolve_follows_dotted_paths_through_objects_and_dicts():
    application = schemas.Application(
        id="a1",
        user_id="u1",
        job_id="j1",
        applied_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        status="pending",
        job=schemas.JobSummary(id="j1", position_name="QA", client_name="Acme"),
    )
    assert resolve(application, "job.client_name") == "Acme"
    assert resolve(application, "user.name") is None
    assert resolve({"job": {"client_name": "Globex"}}, "job.client_name") == "Globex"
    assert resolve({"job": None}, "job.client_name") is None


def test_application_filter_searches_candidate_and_job():
    items = [
        {"user": {"name": "Ada Lovelace", "email": "ada@example.com"}, "job": {"position_name": "QA", "client_name": "Acme"}},
        {"user": {"name": "Alan Turing", "email": "alan@example.com"}, "job": {"position_name": "SRE", "client_name": "Globex"}},
        {"user": None, "job": None},
    ]
    assert filter_items(items, "turing", spec=APPLICATION_FILTER) == [items[1]]
    assert filter_items(items, "acme", spec=APPLICATION_FILTER) == [items[0]]
    assert filter_items(items, facets={"company": "Globex"}, spec=APPLICATION_FILTER) == [items[1]]


def test_user_filter_has_no_facets():
    users = [{"name": "Ada", "email": "ada@example.com"}, {"name": "Bob", "email": "bob@corp.io"}]
    assert filter_items(users, "CORP", spec=USER_FILTER) == [users[1]]
    assert all_facet_options(users, {}, USER_FILTER) == {}


def test_undeclared_facets_are_ignored():
    users = [{"name": "Ada", "email": "ada@example.com"}, {"name": "Bob", "email": "bob@corp.io"}]
    assert filter_items(users, facets={"company": "Acme"}, spec=USER_FILTER) == users
    assert facet_options(users, "company", spec=USER_FILTER) == []
    assert filter_items(JOBS, facets={"company": "Acme", "client_name": "Globex"}) == JOBS[:2]


def test_facet_options_are_sorted_distinct_and_cascade():
    assert facet_options(JOBS, "company") == ["Acme", "Globex", "Initech"]
    assert facet_options(JOBS, "position") == ["Backend Engineer", "Data Analyst", "Frontend Engineer"]
    assert facet_options(JOBS, "position", {"company": "Acme"}) == ["Backend Engineer", "Frontend Engineer"]
    # A downstream selection never narrows the upstream facet
    assert facet_options(JOBS, "company", {"position": "Data Analyst"}) == ["Acme", "Globex", "Initech"]


def test_selecting_company_resets_position_that_no_longer_exists():
    selections = {"company": ALL, "position": "Data Analyst"}
    assert select_facet(JOBS, selections, "company", "Acme") == {"company": "Acme", "position": ALL}


def test_selecting_company_keeps_position_that_still_exists():
    selections = {"company": ALL, "position": "Backend Engineer"}
    assert select_facet(JOBS, selections, "company", "Globex") == {
        "company": "Globex",
        "position": "Backend Engineer",
    }


def test_selecting_unknown_value_falls_back_to_all():
    assert select_facet(JOBS, {}, "company", "Umbrella")["company"] == ALL


def test_reconcile_from_start_leaves_upstream_untouched():
    selections = {"company": "Gone Corp", "position": "Nope"}
    assert reconcile_facets(JOBS, selections, JOB_FILTER, start="position") == {
        "company": "Gone Corp",
        "position": ALL,
    }
    assert reconcile_facets(JOBS, selections, JOB_FILTER) == {"company": ALL, "position": ALL}
