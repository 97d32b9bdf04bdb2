from __future__ import annotations

import allure
import pytest

from wiki_jobs.handlers import JOB_HANDLERS, get_handler, get_registered_types, is_known_type
from wiki_jobs.handlers.citation_verify import handle_citation_verify
from wiki_jobs.handlers.content import slugify
from wiki_jobs.handlers.page_create import handle_page_create
from wiki_jobs.handlers.page_improve import handle_page_improve
from wiki_jobs.handlers.params import (
    AutoUpdateDigestParams,
    BatchCommitParams,
    JobParamsError,
    PageImproveParams,
)
from wiki_jobs.handlers.ping import handle_ping

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Handler Registry"),
]


def test_registry_lists_every_job_type() -> None:
    assert get_registered_types() == [
        "auto-update-digest",
        "batch-commit",
        "citation-verify",
        "page-create",
        "page-improve",
        "ping",
    ]
    assert get_handler("ping") is handle_ping
    assert get_handler("nope") is None
    assert is_known_type("batch-commit")
    assert not is_known_type("Ping")
    assert set(JOB_HANDLERS) == set(get_registered_types())


def test_ping_reports_worker_and_timestamp(handler_context) -> None:
    result = handle_ping({}, handler_context)
    assert result.success
    assert result.data["ok"] is True
    assert result.data["worker"] == "test-worker-1"
    assert result.data["timestamp"].endswith("+00:00")


@pytest.mark.parametrize(
    ("params", "message"),
    [
        ({}, "Missing required param: pageId"),
        ({"pageId": "  "}, "Missing required param: pageId"),
        ({"pageId": "alignment", "tier": "ultra"}, "Invalid tier: 'ultra'. Must be one of: polish, standard, deep"),
    ],
)
def test_page_improve_rejects_bad_params(handler_context, params, message) -> None:
    result = handle_page_improve(params, handler_context)
    assert not result.success
    assert result.error == message


def test_page_create_rejects_bad_tier(handler_context) -> None:
    result = handle_page_create({"title": "New Page", "tier": "deep"}, handler_context)
    assert result.error == "Invalid tier: 'deep'. Must be one of: budget, standard, premium"
    assert handle_page_create({}, handler_context).error == "Missing required param: title"


def test_citation_verify_requires_page_id(handler_context) -> None:
    assert handle_citation_verify({}, handler_context).error == "Missing required param: pageId"


def test_page_improve_defaults() -> None:
    decoded = PageImproveParams.from_params({"pageId": "alignment"})
    assert decoded.tier == "standard"
    assert decoded.directions == ""
    assert decoded.batch_id is None


@pytest.mark.parametrize(
    ("params", "message"),
    [
        ({"childJobIds": [1], "prTitle": "t"}, "Missing required param: batchId"),
        ({"batchId": "b", "prTitle": "t"}, "Missing required param: childJobIds (must be non-empty array)"),
        ({"batchId": "b", "childJobIds": [], "prTitle": "t"}, "Missing required param: childJobIds (must be non-empty array)"),
        ({"batchId": "b", "childJobIds": [1]}, "Missing required param: prTitle"),
        ({"batchId": "b", "childJobIds": [True], "prTitle": "t"}, "Invalid param: childJobIds contains True"),
    ],
)
def test_batch_commit_params_validation(params, message) -> None:
    with pytest.raises(JobParamsError) as exc_info:
        BatchCommitParams.from_params(params)
    assert str(exc_info.value) == message


def test_batch_commit_params_accept_numeric_strings() -> None:
    decoded = BatchCommitParams.from_params(
        {"batchId": "b-1", "childJobIds": [3, "4"], "prTitle": "Title", "prLabels": ["auto-update"]},
    )
    assert decoded.child_job_ids == [3, 4]
    assert decoded.pr_labels == ["auto-update"]
    assert decoded.branch_name is None


def test_auto_update_params() -> None:
    decoded = AutoUpdateDigestParams.from_params(
        {
            "budget": "12.5",
            "maxPages": 3,
            "sources": "alpha, beta,",
            "dryRun": "true",
            "updates": [{"pageId": "alignment", "tier": "deep"}],
        },
    )
    assert decoded.budget == 12.5
    assert decoded.max_pages == 3
    assert decoded.sources == ("alpha", "beta")
    assert decoded.dry_run is True
    assert decoded.updates is not None
    assert decoded.updates[0].page_id == "alignment"
    assert decoded.updates[0].tier == "deep"

    defaults = AutoUpdateDigestParams.from_params({})
    assert defaults.budget == 50.0
    assert defaults.max_pages == 10
    assert defaults.updates is None

    with pytest.raises(JobParamsError, match="updates\\[0\\].pageId"):
        AutoUpdateDigestParams.from_params({"updates": [{"tier": "polish"}]})
    with pytest.raises(JobParamsError, match="budget"):
        AutoUpdateDigestParams.from_params({"budget": -1})


def test_slugify() -> None:
    assert slugify("Large Language Models (LLMs)") == "large-language-models-llms"
    assert slugify("  AI -- Safety!  ") == "ai-safety"
    assert slugify("???") == ""
