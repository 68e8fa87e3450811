"""External tool invocation for PDF optimization."""

import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .exceptions import ToolFailure
from .logging_config import component_logger
from .models import PdfToolConfig
from .protocols import ToolRun

logger = component_logger("tool")


def ghostscript_args(
    config: PdfToolConfig,
    input_path: Union[str, Path],
    output_path: Union[str, Path],
) -> List[str]:
    """
    Build the Ghostscript command line for one optimization pass.

    Color, gray and mono images are downsampled to ``config.resolution_dpi``
    and duplicate images are stored once.
    """
    dpi = config.resolution_dpi
    args = [
        config.command,
        "-sDEVICE=pdfwrite",
        "-dCompatibilityLevel=1.4",
        f"-dPDFSETTINGS={config.pdf_settings}",
        "-dNOPAUSE",
        "-dBATCH",
        "-dQUIET",
        "-dSAFER",
    ]
    for channel in ("Color", "Gray", "Mono"):
        args += [
            f"-dDownsample{channel}Images=true",
            f"-d{channel}ImageResolution={dpi}",
        ]
    args += [
        "-dColorImageDownsampleType=/Bicubic",
        "-dGrayImageDownsampleType=/Bicubic",
        "-dMonoImageDownsampleType=/Subsample",
        "-dDetectDuplicateImages=true",
        f"-sOutputFile={output_path}",
        str(input_path),
    ]
    return args


def tool_available(command: str) -> bool:
    return shutil.which(command) is not None


class SubprocessToolRunner:
    """Runs a tool as a child process and kills it when the timeout expires."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: Optional[subprocess.Popen] = None
        self._cancelled = False

    def run(self, args: Sequence[str], output_path: Path, timeout: float) -> ToolRun:
        """
        Run ``args`` to completion or until ``timeout`` seconds have passed.

        Raises:
            ToolFailure: The binary is missing, or the process was killed on
                timeout or cancellation.
        """
        start = time.time()
        try:
            proc = subprocess.Popen(
                list(args),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise ToolFailure(f"Could not start {args[0]}: {exc}") from exc

        with self._lock:
            self._active = proc
            self._cancelled = False

        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            stdout, stderr = proc.communicate()
            logger.warning(f"{args[0]} killed after {timeout:.0f}s timeout")
            raise ToolFailure(
                f"{args[0]} timed out after {timeout:.0f}s",
                exit_code=proc.returncode,
                timed_out=True,
            )
        finally:
            with self._lock:
                self._active = None

        duration = time.time() - start
        if self._cancelled:
            raise ToolFailure(f"{args[0]} was cancelled", exit_code=proc.returncode)

        if stdout:
            logger.debug(f"{args[0]} stdout: {stdout.strip()}")
        if stderr:
            logger.debug(f"{args[0]} stderr: {stderr.strip()}")

        return ToolRun(
            exit_code=proc.returncode,
            output_path=Path(output_path),
            stdout=stdout or "",
            stderr=stderr or "",
            duration=duration,
        )

    def cancel(self) -> bool:
        """Kill the running process, if any. Returns True if one was killed."""
        with self._lock:
            proc = self._active
            if proc is None or proc.poll() is not None:
                return False
            self._cancelled = True
            proc.kill()
        logger.info("Cancelled active tool process")
        return True
