"""Unit tests for TransferPlan loading and validation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from chat_importer.core.plan import TransferPlan, load_plan, parse_version
from chat_importer.exceptions import (
    PlanNotFoundError,
    PlanValidationError,
    PlanVersionError,
)


class TestParseVersion:
    def test_valid(self) -> None:
        assert parse_version("1.2.3") == (1, 2, 3)
        assert parse_version("1.0.0-beta.1+build.5") == (1, 0, 0)

    @pytest.mark.parametrize("value", ["1.0", "v1.0.0", "", None, 1])
    def test_invalid(self, value) -> None:
        with pytest.raises(PlanVersionError):
            parse_version(value)


class TestFromDict:
    """Tests for plan validation."""

    def test_valid_plan(self, text_plan_dict) -> None:
        plan = TransferPlan.from_dict(text_plan_dict)
        assert len(plan) == 5
        assert [job.id for job in plan.jobs] == [f"job-{i}" for i in range(1, 6)]

    def test_mixed_media_plan(self, make_job, make_plan) -> None:
        jobs = [
            make_job(1),
            make_job(2, kind="image"),
            make_job(3, kind="document"),
        ]
        excluded = [
            {
                "source_id": "msg-99",
                "reason": "service_message",
                "explanation": "Pinned message notice",
            }
        ]
        plan = TransferPlan.from_dict(make_plan(jobs, excluded))
        assert plan.media_count == 2
        assert plan.excluded[0].reason.value == "service_message"

    def test_empty_plan(self, make_plan) -> None:
        plan = TransferPlan.from_dict(make_plan([]))
        assert len(plan) == 0

    def test_unsupported_major_version(self, text_plan_dict) -> None:
        text_plan_dict["version"] = "2.0.0"
        with pytest.raises(PlanVersionError, match="Unsupported plan version"):
            TransferPlan.from_dict(text_plan_dict)

    def test_minor_version_accepted(self, text_plan_dict) -> None:
        text_plan_dict["version"] = "1.4.0"
        assert TransferPlan.from_dict(text_plan_dict).version == "1.4.0"

    def test_out_of_order_jobs_rejected(self, make_job, make_plan) -> None:
        jobs = [make_job(2), make_job(1)]
        with pytest.raises(PlanValidationError, match="sorted"):
            TransferPlan.from_dict(make_plan(jobs))

    def test_equal_ordering_keys_allowed(self, make_job, make_plan) -> None:
        jobs = [make_job(1), make_job(2, ordering_key=make_job(1)["ordering_key"])]
        assert len(TransferPlan.from_dict(make_plan(jobs))) == 2

    def test_duplicate_job_id(self, make_job, make_plan) -> None:
        jobs = [make_job(1), make_job(2, id="job-1")]
        with pytest.raises(PlanValidationError, match="Duplicate job id"):
            TransferPlan.from_dict(make_plan(jobs))

    def test_duplicate_source_id(self, make_job, make_plan) -> None:
        jobs = [make_job(1), make_job(2, source_id="msg-1")]
        with pytest.raises(PlanValidationError, match="Duplicate source_id"):
            TransferPlan.from_dict(make_plan(jobs))

    def test_planned_and_excluded_overlap(self, make_job, make_plan) -> None:
        excluded = [
            {"source_id": "msg-1", "reason": "empty_message", "explanation": "empty"}
        ]
        with pytest.raises(PlanValidationError, match="both planned and excluded"):
            TransferPlan.from_dict(make_plan([make_job(1)], excluded))

    def test_unknown_exclusion_reason(self, make_job, make_plan) -> None:
        excluded = [{"source_id": "msg-9", "reason": "spam", "explanation": "x"}]
        with pytest.raises(PlanValidationError, match="unknown reason"):
            TransferPlan.from_dict(make_plan([make_job(1)], excluded))

    def test_metadata_count_mismatch(self, text_plan_dict) -> None:
        text_plan_dict["metadata"]["transferable_records"] = 4
        with pytest.raises(PlanValidationError, match="transferable_records"):
            TransferPlan.from_dict(text_plan_dict)

    def test_statistics_kind_mismatch(self, text_plan_dict) -> None:
        text_plan_dict["statistics"]["kinds"] = {"text": 4, "image": 1}
        with pytest.raises(PlanValidationError, match="Statistics mismatch"):
            TransferPlan.from_dict(text_plan_dict)

    def test_statistics_bytes_mismatch(self, make_job, make_plan) -> None:
        plan = make_plan([make_job(1, kind="audio")])
        plan["statistics"]["total_bytes"] = 1
        with pytest.raises(PlanValidationError, match="total_bytes mismatch: declared 1"):
            TransferPlan.from_dict(plan)

    def test_mismatch_messages_put_declared_first(self, text_plan_dict) -> None:
        text_plan_dict["statistics"]["kinds"] = {"text": 4}
        with pytest.raises(
            PlanValidationError, match="'text': declared 4, jobs give 5"
        ):
            TransferPlan.from_dict(text_plan_dict)

    @pytest.mark.parametrize(
        "field_name, value, message",
        [
            ("date_range", ["a"], "date_range must be an object"),
            ("kinds", ["text"], "kinds must map names"),
            ("kinds", {"text": "5"}, "kinds must map names"),
            ("media_types", {"image/jpeg": -1}, "media_types must map names"),
            ("total_bytes", "10", "total_bytes must be a non-negative integer"),
            ("total_bytes", -1, "total_bytes must be a non-negative integer"),
            ("total_bytes", True, "total_bytes must be a non-negative integer"),
        ],
    )
    def test_malformed_statistics_fields(
        self, text_plan_dict, field_name, value, message
    ) -> None:
        text_plan_dict["statistics"][field_name] = value
        with pytest.raises(PlanValidationError, match=message):
            TransferPlan.from_dict(text_plan_dict)

    def test_null_date_range_accepted_for_empty_plan(self, make_plan) -> None:
        plan = make_plan([])
        plan["statistics"]["date_range"] = None
        assert len(TransferPlan.from_dict(plan)) == 0

    def test_date_range_mismatch(self, text_plan_dict) -> None:
        text_plan_dict["statistics"]["date_range"]["latest"] = "2000-01-01T00:00:00Z"
        with pytest.raises(PlanValidationError, match="date_range.latest"):
            TransferPlan.from_dict(text_plan_dict)

    def test_missing_section(self, text_plan_dict) -> None:
        del text_plan_dict["statistics"]
        with pytest.raises(PlanValidationError, match="statistics"):
            TransferPlan.from_dict(text_plan_dict)

    def test_non_object_job(self, text_plan_dict) -> None:
        text_plan_dict["jobs"].append("not a job")
        with pytest.raises(PlanValidationError, match="must be an object"):
            TransferPlan.from_dict(text_plan_dict)

    def test_to_dict_reloads(self, text_plan_dict) -> None:
        plan = TransferPlan.from_dict(text_plan_dict)
        again = TransferPlan.from_dict(plan.to_dict())
        assert [job.id for job in again.jobs] == [job.id for job in plan.jobs]


class TestWithDestination:
    def test_overrides_every_job(self, text_plan_dict) -> None:
        plan = TransferPlan.from_dict(text_plan_dict)
        plan.with_destination("12345@g.us")
        assert {job.destination for job in plan.jobs} == {"12345@g.us"}


class TestLoadPlan:
    def test_load(self, plan_dir: Path) -> None:
        plan = load_plan(plan_dir / "import-plan.json")
        assert plan.path == plan_dir / "import-plan.json"
        assert len(plan) == 5

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PlanNotFoundError) as exc_info:
            load_plan(tmp_path / "import-plan.json")
        assert exc_info.value.exit_code == 10

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "import-plan.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(PlanValidationError, match="Failed to read plan"):
            load_plan(path)

    def test_invalid_plan_has_plan_exit_code(
        self, tmp_path: Path, text_plan_dict
    ) -> None:
        text_plan_dict["version"] = "9.0.0"
        path = tmp_path / "import-plan.json"
        path.write_text(json.dumps(text_plan_dict), encoding="utf-8")
        with pytest.raises(PlanVersionError) as exc_info:
            load_plan(path)
        assert exc_info.value.exit_code == 11
