"""Unit tests for service implementations."""

from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from PIL import Image, ImageStat

from upload_pipeline.core.exceptions import (
    CompressionFailed,
    TooLarge,
    ToolFailure,
    UploadNotFound,
)
from upload_pipeline.core.models import (
    Category,
    ImagePolicy,
    LadderRung,
    PipelineConfig,
    SizeBudgets,
)
from upload_pipeline.core.image_utils import open_image
from upload_pipeline.core.observability import MetricsCollector
from upload_pipeline.core.protocols import CompressionOutcome
from upload_pipeline.core.services import (
    CompressionDispatcher,
    ImageCompressorService,
    PdfCompressorService,
)
from upload_pipeline.core.staging import list_temporaries
from upload_pipeline.testing.fakes import (
    FakeLogger,
    FakeToolRunner,
    create_gradient_16bit,
    create_test_image,
    write_blob,
    write_pdf,
)

SMALL_LADDER = (
    LadderRung(max_width=400, quality=80),
    LadderRung(max_width=400, quality=65),
    LadderRung(max_width=400, quality=50),
    LadderRung(max_width=300, quality=40),
    LadderRung(max_width=200, quality=35),
)


def make_config(**overrides) -> PipelineConfig:
    values = {"ladder": SMALL_LADDER}
    values.update(overrides)
    return PipelineConfig(**values)


def sized_encoder(sizes):
    """Stand-in for encode_image writing files of the given sizes in order."""
    calls = []

    def fake_encode(img, dest, format_type, quality):
        size = sizes[len(calls)]
        calls.append((format_type, quality, img.width))
        Path(dest).write_bytes(bytes([len(calls)]) * size)

    fake_encode.calls = calls
    return fake_encode


class TestImageCompressorService:
    """Tests for ImageCompressorService."""

    def test_early_exit_when_first_rung_fits(self, tmp_path):
        path = create_test_image(tmp_path / "photo.jpg", 600, 400, noisy=True)
        original_size = path.stat().st_size
        service = ImageCompressorService(make_config(), FakeLogger())

        outcome = service.compress(path, budget=original_size - 1)

        assert len(outcome.passes) == 1
        assert outcome.passes[0].accepted is True
        assert outcome.final_size == path.stat().st_size
        assert outcome.final_size < original_size
        with Image.open(path) as img:
            assert img.width == 400
            assert img.format == "JPEG"
        assert list_temporaries(path) == []

    def test_best_effort_keeps_smallest_candidate(self, tmp_path):
        path = create_test_image(tmp_path / "photo.png", 500, 400, format="PNG", noisy=True)
        logger = FakeLogger()
        service = ImageCompressorService(make_config(), logger)

        outcome = service.compress(path, budget=100)

        sizes = [p.size for p in outcome.passes]
        assert len(sizes) == len(SMALL_LADDER)
        assert outcome.final_size == min(sizes)
        assert outcome.final_size > 100
        assert path.stat().st_size == outcome.final_size
        assert sum(p.accepted for p in outcome.passes) == 1
        assert logger.get_logs("WARNING")
        assert list_temporaries(path) == []
        with Image.open(path) as img:
            assert img.format == "PNG"

    def test_monotonic_best_tracking(self, tmp_path):
        path = create_test_image(tmp_path / "photo.jpg", 100, 100, noisy=True)
        encoder = sized_encoder([500, 300, 400, 350, 320])
        service = ImageCompressorService(make_config(), FakeLogger())

        with patch("upload_pipeline.core.services.encode_image", encoder):
            outcome = service.compress(path, budget=10)

        assert [p.size for p in outcome.passes] == [500, 300, 400, 350, 320]
        assert outcome.final_size == 300
        assert path.read_bytes() == bytes([2]) * 300
        assert outcome.passes[1].accepted is True
        assert outcome.strategy == "ladder 400px/q65"
        assert list_temporaries(path) == []

    def test_ladder_parameters_are_applied_in_order(self, tmp_path):
        path = create_test_image(tmp_path / "photo.bmp", 1000, 100, format="BMP")
        encoder = sized_encoder([50, 40, 30, 20, 10])
        service = ImageCompressorService(make_config(), FakeLogger())

        with patch("upload_pipeline.core.services.encode_image", encoder):
            service.compress(path, budget=1)

        assert encoder.calls == [
            ("JPEG", 80, 400),
            ("JPEG", 65, 400),
            ("JPEG", 50, 400),
            ("JPEG", 40, 300),
            ("JPEG", 35, 200),
        ]

    def test_stops_at_first_rung_within_budget(self, tmp_path):
        path = create_test_image(tmp_path / "photo.jpg", 100, 100, noisy=True)
        encoder = sized_encoder([900, 600, 450, 100, 50])
        service = ImageCompressorService(make_config(), FakeLogger())

        with patch("upload_pipeline.core.services.encode_image", encoder):
            outcome = service.compress(path, budget=500)

        assert len(outcome.passes) == 3
        assert outcome.final_size == 450

    def test_never_grows_the_original(self, tmp_path):
        path = create_test_image(tmp_path / "photo.jpg", 50, 50)
        original = path.read_bytes()
        too_big = len(original) + 1000
        encoder = sized_encoder([too_big] * 5)
        service = ImageCompressorService(make_config(), FakeLogger())

        with patch("upload_pipeline.core.services.encode_image", encoder):
            outcome = service.compress(path, budget=10)

        assert outcome.final_size == len(original)
        assert outcome.strategy == "original"
        assert path.read_bytes() == original
        assert list_temporaries(path) == []

    def test_strict_policy_raises_when_over_budget(self, tmp_path):
        path = create_test_image(tmp_path / "photo.jpg", 100, 100, noisy=True)
        original = path.read_bytes()
        encoder = sized_encoder([500, 400, 300, 200, 150])
        service = ImageCompressorService(
            make_config(image_policy=ImagePolicy.STRICT), FakeLogger()
        )

        with patch("upload_pipeline.core.services.encode_image", encoder):
            with pytest.raises(CompressionFailed) as exc_info:
                service.compress(path, budget=100)

        assert exc_info.value.size == 150
        assert exc_info.value.budget == 100
        assert path.read_bytes() == original
        assert list_temporaries(path) == []

    def test_strict_policy_accepts_when_a_rung_fits(self, tmp_path):
        path = create_test_image(tmp_path / "photo.jpg", 100, 100, noisy=True)
        encoder = sized_encoder([500, 90, 300, 200, 150])
        service = ImageCompressorService(
            make_config(image_policy=ImagePolicy.STRICT), FakeLogger()
        )

        with patch("upload_pipeline.core.services.encode_image", encoder):
            outcome = service.compress(path, budget=100)

        assert outcome.final_size == 90

    def test_failed_rung_is_skipped(self, tmp_path):
        path = create_test_image(tmp_path / "photo.jpg", 100, 100, noisy=True)
        sizes = iter([300, 200])
        calls = []

        def flaky_encode(img, dest, format_type, quality):
            calls.append(quality)
            if len(calls) == 1:
                Path(dest).write_bytes(b"partial")
                raise OSError("encoder error")
            Path(dest).write_bytes(b"x" * next(sizes))

        service = ImageCompressorService(make_config(), FakeLogger())

        with patch("upload_pipeline.core.services.encode_image", flaky_encode):
            outcome = service.compress(path, budget=250)

        assert outcome.passes[0].error == "encoder error"
        assert outcome.passes[0].size is None
        assert outcome.final_size == 200
        assert len(outcome.passes) == 3
        assert list_temporaries(path) == []

    def test_undecodable_image_within_budget_is_kept(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"not really a jpeg")
        service = ImageCompressorService(make_config(), FakeLogger())

        outcome = service.compress(path, budget=1000)

        assert outcome.final_size == len(b"not really a jpeg")
        assert outcome.passes[0].label == "decode"
        assert path.exists()

    def test_undecodable_image_over_budget_fails(self, tmp_path):
        path = write_blob(tmp_path / "broken.jpg", 5000)
        service = ImageCompressorService(make_config(), FakeLogger())

        with pytest.raises(CompressionFailed):
            service.compress(path, budget=1000)

    def test_transparent_webp_is_compressed(self, tmp_path):
        path = create_test_image(tmp_path / "logo.webp", 500, 300, format="WEBP", mode="RGBA")
        service = ImageCompressorService(make_config(), FakeLogger())

        service.compress(path, budget=10 * 1024 * 1024)

        with Image.open(path) as img:
            assert img.format in ("JPEG", "WEBP")

    def test_webp_lossy_format(self, tmp_path):
        path = create_test_image(tmp_path / "photo.jpg", 600, 400, noisy=True)
        service = ImageCompressorService(make_config(lossy_format="WEBP"), FakeLogger())

        outcome = service.compress(path, budget=path.stat().st_size - 1)

        assert outcome.passes[0].accepted
        with Image.open(path) as img:
            assert img.format == "WEBP"

    def test_16bit_scan_keeps_its_luminance(self, tmp_path):
        path = create_gradient_16bit(tmp_path / "scan.png", 512, 64)
        service = ImageCompressorService(make_config(), FakeLogger())

        outcome = service.compress(path, budget=path.stat().st_size // 2)

        assert outcome.passes
        mean = ImageStat.Stat(open_image(path).convert("L")).mean[0]
        assert abs(mean - 127.5) < 4


class TestPdfCompressorService:
    """Tests for PdfCompressorService."""

    def test_smaller_output_replaces_original(self, tmp_path):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        runner = FakeToolRunner(output_size=1000)
        service = PdfCompressorService(make_config(), runner, FakeLogger())

        outcome = service.compress(path, budget=2000)

        assert outcome.final_size == 1000
        assert outcome.strategy == "optimized"
        assert outcome.passes[0].accepted is True
        assert path.stat().st_size == 1000
        assert runner.call_count == 1
        assert list_temporaries(path) == []

    def test_tool_receives_timeout_and_temp_output(self, tmp_path):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        runner = FakeToolRunner()
        config = make_config(pdf={"timeout_seconds": 42, "resolution_dpi": 120})
        service = PdfCompressorService(config, runner, FakeLogger())

        service.compress(path, budget=5000)

        call = runner.calls[0]
        assert call["timeout"] == 42
        assert call["output_path"].name.startswith("doc.pdf.tmp-")
        assert "-dGrayImageResolution=120" in call["args"]
        assert call["args"][-1] == str(path)

    def test_larger_output_is_discarded(self, tmp_path):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        original = path.read_bytes()
        service = PdfCompressorService(
            make_config(), FakeToolRunner(output_size=4000), FakeLogger()
        )

        outcome = service.compress(path, budget=5000)

        assert outcome.final_size == 3000
        assert outcome.strategy == "original"
        assert path.read_bytes() == original
        assert list_temporaries(path) == []

    def test_equal_output_keeps_original(self, tmp_path):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        original = path.read_bytes()
        service = PdfCompressorService(
            make_config(), FakeToolRunner(output_size=3000), FakeLogger()
        )

        outcome = service.compress(path, budget=5000)

        assert outcome.strategy == "original"
        assert path.read_bytes() == original

    @pytest.mark.parametrize("failure", ["set_timeout", "set_crash", "set_no_output"])
    def test_tool_failure_falls_back_to_original(self, tmp_path, failure):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        original = path.read_bytes()
        runner = FakeToolRunner()
        getattr(runner, failure)()
        logger = FakeLogger()
        service = PdfCompressorService(make_config(), runner, logger)

        outcome = service.compress(path, budget=5000)

        assert outcome.final_size == 3000
        assert outcome.strategy == "original (tool failed)"
        assert outcome.passes[0].error
        assert path.read_bytes() == original
        assert list_temporaries(path) == []
        assert logger.get_logs("WARNING")

    def test_non_zero_exit_falls_back_to_original(self, tmp_path):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        runner = FakeToolRunner()
        runner.set_exit_code(1)
        service = PdfCompressorService(make_config(), runner, FakeLogger())

        outcome = service.compress(path, budget=5000)

        assert outcome.final_size == 3000
        assert "exited with code 1" in outcome.passes[0].error
        assert list_temporaries(path) == []

    def test_tool_failure_with_oversized_original(self, tmp_path):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        runner = FakeToolRunner()
        runner.set_timeout()
        service = PdfCompressorService(make_config(), runner, FakeLogger())

        with pytest.raises(TooLarge) as exc_info:
            service.compress(path, budget=2000)

        assert isinstance(exc_info.value.__cause__, ToolFailure)
        assert exc_info.value.__cause__.timed_out is True
        assert exc_info.value.size == 3000
        assert list_temporaries(path) == []

    def test_optimized_but_still_over_budget(self, tmp_path):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        service = PdfCompressorService(
            make_config(), FakeToolRunner(output_size=2500), FakeLogger()
        )

        with pytest.raises(TooLarge) as exc_info:
            service.compress(path, budget=2000)

        assert exc_info.value.size == 2500
        assert exc_info.value.__cause__ is None

    def test_runner_os_error_is_a_tool_failure(self, tmp_path):
        path = write_pdf(tmp_path / "doc.pdf", 3000)
        runner = Mock()
        runner.run.side_effect = OSError("broken pipe")
        service = PdfCompressorService(make_config(), runner, FakeLogger())

        outcome = service.compress(path, budget=5000)

        assert "crashed" in outcome.passes[0].error
        assert outcome.final_size == 3000


class TestCompressionDispatcher:
    """Tests for CompressionDispatcher."""

    def make_dispatcher(self, config=None, image=None, pdf=None, metrics=None):
        config = config or make_config(budgets=SizeBudgets(image=5000, pdf=5000, other=5000))
        return CompressionDispatcher(
            config=config,
            image_compressor=image or Mock(),
            pdf_compressor=pdf or Mock(),
            logger=FakeLogger(),
            metrics_collector=metrics,
        )

    def test_other_within_budget_is_accepted_untouched(self, tmp_path):
        path = write_blob(tmp_path / "notes.docx", 4000)
        image, pdf = Mock(), Mock()
        dispatcher = self.make_dispatcher(image=image, pdf=pdf)

        result = dispatcher.compress(path)

        assert result.category is Category.OTHER
        assert result.final_size == 4000
        assert result.within_budget is True
        assert result.passes == []
        image.compress.assert_not_called()
        pdf.compress.assert_not_called()

    def test_other_over_budget_is_rejected_and_deleted(self, tmp_path):
        path = write_blob(tmp_path / "archive.zip", 6000)
        dispatcher = self.make_dispatcher()

        with pytest.raises(TooLarge) as exc_info:
            dispatcher.compress(path)

        assert exc_info.value.category == "other"
        assert not path.exists()

    def test_other_exactly_at_budget_is_accepted(self, tmp_path):
        path = write_blob(tmp_path / "archive.zip", 5000)

        assert self.make_dispatcher().compress(path).final_size == 5000

    @pytest.mark.parametrize(
        "name,attr",
        [("photo.JPG", "image"), ("scan.pdf", "pdf")],
    )
    def test_routes_by_category(self, tmp_path, name, attr):
        path = write_blob(tmp_path / name, 100)
        compressors = {"image": Mock(), "pdf": Mock()}
        compressors[attr].compress.return_value = CompressionOutcome(80, "optimized", [])
        dispatcher = self.make_dispatcher(
            image=compressors["image"], pdf=compressors["pdf"]
        )

        result = dispatcher.compress(str(path))

        assert result.final_size == 80
        assert result.original_size == 100
        assert result.budget == 5000
        compressors[attr].compress.assert_called_once()
        args = compressors[attr].compress.call_args[0]
        assert args[0] == path
        assert args[1] == 5000

    def test_missing_file(self, tmp_path):
        dispatcher = self.make_dispatcher()

        with pytest.raises(UploadNotFound):
            dispatcher.compress(tmp_path / "gone.jpg")

    def test_compressor_failure_deletes_file(self, tmp_path):
        path = write_blob(tmp_path / "scan.pdf", 100)
        pdf = Mock()
        pdf.compress.side_effect = TooLarge(100, 50, "pdf")
        dispatcher = self.make_dispatcher(pdf=pdf)

        with pytest.raises(TooLarge):
            dispatcher.compress(path)

        assert not path.exists()

    def test_unexpected_error_is_wrapped_and_file_deleted(self, tmp_path):
        path = write_blob(tmp_path / "photo.png", 100)
        image = Mock()
        image.compress.side_effect = RuntimeError("segfault-ish")
        dispatcher = self.make_dispatcher(image=image)

        with pytest.raises(CompressionFailed) as exc_info:
            dispatcher.compress(path)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert not path.exists()

    def test_leftover_temporaries_are_swept(self, tmp_path):
        path = write_blob(tmp_path / "photo.png", 100)
        image = Mock()

        def leave_temp(p, budget, context):
            (tmp_path / "photo.png.tmp-leftover").write_bytes(b"x")
            return CompressionOutcome(100, "original", [])

        image.compress.side_effect = leave_temp
        dispatcher = self.make_dispatcher(image=image)

        dispatcher.compress(path)

        assert list_temporaries(path) == []

    def test_metrics_recorded_for_success_and_failure(self, tmp_path):
        metrics = MetricsCollector()
        dispatcher = self.make_dispatcher(metrics=metrics)
        write_blob(tmp_path / "ok.zip", 10)
        write_blob(tmp_path / "big.zip", 6000)

        dispatcher.compress(tmp_path / "ok.zip")
        with pytest.raises(TooLarge):
            dispatcher.compress(tmp_path / "big.zip")

        summary = metrics.get_summary("compress")
        assert summary["total_operations"] == 2
        assert summary["successful_operations"] == 1
        assert summary["failed_operations"] == 1
        failed = [m for m in metrics.get_metrics() if not m.success][0]
        assert "exceeding" in failed.error_message
