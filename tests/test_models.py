"""Tests for the pipeline data models."""

import pytest
from pydantic import ValidationError

from upload_pipeline.core.models import (
    DEFAULT_LADDER,
    MB,
    Category,
    CompressionPass,
    CompressionResult,
    FileOutcome,
    ImagePolicy,
    LadderRung,
    PipelineConfig,
    SizeBudgets,
)


class TestPipelineConfig:
    """Tests for PipelineConfig defaults and validation."""

    def test_defaults(self):
        config = PipelineConfig()

        assert config.budgets.image == 5 * MB
        assert config.budgets.pdf == 20 * MB
        assert config.budgets.other == 20 * MB
        assert config.image_policy is ImagePolicy.BEST_EFFORT
        assert config.lossy_format == "JPEG"
        assert config.pdf.command == "gs"
        assert config.pdf.resolution_dpi == 150
        assert "questoes" in config.allowed_folders

    def test_default_ladder(self):
        assert [(r.max_width, r.quality) for r in DEFAULT_LADDER] == [
            (1920, 80),
            (1920, 65),
            (1920, 50),
            (1200, 40),
            (800, 35),
        ]

    def test_config_is_frozen(self):
        config = PipelineConfig()
        with pytest.raises(ValidationError):
            config.lossy_format = "WEBP"

    def test_empty_ladder_rejected(self):
        with pytest.raises(ValidationError, match="at least one rung"):
            PipelineConfig(ladder=())

    def test_increasing_width_rejected(self):
        ladder = (
            LadderRung(max_width=800, quality=80),
            LadderRung(max_width=1200, quality=60),
        )
        with pytest.raises(ValidationError, match="widths must not increase"):
            PipelineConfig(ladder=ladder)

    def test_non_decreasing_quality_rejected(self):
        ladder = (
            LadderRung(max_width=1920, quality=60),
            LadderRung(max_width=1920, quality=60),
        )
        with pytest.raises(ValidationError, match="strictly decrease"):
            PipelineConfig(ladder=ladder)

    def test_lossy_format_is_normalized(self):
        assert PipelineConfig(lossy_format="webp").lossy_format == "WEBP"

    def test_unknown_lossy_format_rejected(self):
        with pytest.raises(ValidationError):
            PipelineConfig(lossy_format="GIF")


class TestLadderRung:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_width": 0, "quality": 50},
            {"max_width": 100, "quality": 0},
            {"max_width": 100, "quality": 101},
        ],
    )
    def test_invalid_rungs(self, kwargs):
        with pytest.raises(ValidationError):
            LadderRung(**kwargs)

    def test_label(self):
        assert LadderRung(max_width=1200, quality=40).label() == "1200px/q40"


class TestSizeBudgets:
    @pytest.mark.parametrize(
        "category,expected",
        [(Category.IMAGE, 1), (Category.PDF, 2), (Category.OTHER, 3), ("pdf", 2)],
    )
    def test_for_category(self, category, expected):
        budgets = SizeBudgets(image=1, pdf=2, other=3)
        assert budgets.for_category(category) == expected

    def test_budget_must_be_positive(self):
        with pytest.raises(ValidationError):
            SizeBudgets(image=0)


class TestResults:
    def _result(self, **overrides):
        values = dict(
            path="/uploads/questoes/a.jpg",
            category=Category.IMAGE,
            original_size=8 * MB,
            final_size=2 * MB,
            budget=5 * MB,
            within_budget=True,
            strategy="ladder 1920px/q80",
            passes=[CompressionPass(label="1920px/q80", size=2 * MB, accepted=True)],
        )
        values.update(overrides)
        return CompressionResult(**values)

    def test_compression_result_response(self):
        response = self._result().to_response()

        assert response == {
            "size": 2 * MB,
            "category": "image",
            "original_size": 8 * MB,
            "budget": 5 * MB,
            "within_budget": True,
            "strategy": "ladder 1920px/q80",
        }

    def test_file_outcome_success_response(self):
        outcome = FileOutcome(source_path="a.jpg", success=True, result=self._result())

        response = outcome.to_response()

        assert response["path"] == "a.jpg"
        assert response["size"] == 2 * MB

    def test_file_outcome_failure_response(self):
        outcome = FileOutcome(
            source_path="a.zip", error="too big", error_type="TooLarge", http_status=413
        )

        assert outcome.to_response() == {
            "path": "a.zip",
            "error": "too big",
            "error_type": "TooLarge",
            "status": 413,
        }
