"""
FFmpeg Compositor

Overlays a watermark onto a photo or video: the watermark is made
semi-transparent and centred over the source frame. The call blocks until
ffmpeg exits; ffmpeg's diagnostics are streamed into the log line by line.
"""

import subprocess
from pathlib import Path
from typing import List, Optional, Tuple, Union

from src.core.config import settings
from src.core.exceptions import CompositingError
from src.core.logging import get_logger
from src.core.metrics import record_compositor_run

logger = get_logger(__name__)

PathLike = Union[str, Path]

OVERLAY_FILTER = (
    "[1]format=bgra,colorchannelmixer=aa={opacity},"
    "rotate=0:c=black@0:ow=rotw(0):oh=roth(0)[image1];"
    "[0][image1]overlay=(main_w-overlay_w)/2:(main_h-overlay_h)/2"
)


class FFmpegCompositor:

    def __init__(
        self,
        binary: str = "ffmpeg",
        opacity: float = 0.4,
        working_dir: Optional[PathLike] = None
    ):
        self.binary = binary
        self.opacity = opacity
        self.working_dir = Path(working_dir) if working_dir else Path.home()

    def build_command(self, source: PathLike, watermark: PathLike, destination: PathLike) -> List[str]:
        return [
            self.binary,
            "-y",
            "-i", str(source),
            "-i", str(watermark),
            "-filter_complex", OVERLAY_FILTER.format(opacity=self.opacity),
            str(destination),
        ]

    def overlay(self, source: PathLike, watermark: PathLike, destination: PathLike) -> int:
        """
        Run ffmpeg and return its exit code.

        Any existing file at `destination` is overwritten. A non-zero exit
        code means `destination` must not be used.
        """
        command = self.build_command(source, watermark, destination)
        logger.info("compositor_started", source=str(source), destination=str(destination))

        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                cwd=self.working_dir,
                text=True,
                errors="replace",
            )
        except OSError as e:
            record_compositor_run(-1)
            raise CompositingError(f"Failed to start {self.binary}: {e}") from e

        with process.stderr:
            for line in process.stderr:
                line = line.rstrip()
                if line:
                    logger.info("compositor_output", line=line)
        exit_code = process.wait()

        record_compositor_run(exit_code)
        logger.info("compositor_finished", exit_code=exit_code)
        return exit_code

    def is_available(self) -> Tuple[bool, str]:
        """
        Check that the ffmpeg binary can be run.

        Returns:
            Tuple of (is_available, version_or_error_message)
        """
        try:
            result = subprocess.run(
                [self.binary, "-version"], capture_output=True, text=True, timeout=10
            )
            if result.returncode == 0:
                return True, result.stdout.split("\n")[0]
            return False, f"{self.binary} returned error code {result.returncode}"
        except FileNotFoundError:
            return False, f"{self.binary} not found in system PATH"
        except subprocess.TimeoutExpired:
            return False, f"{self.binary} version check timed out"
        except OSError as e:
            return False, f"Error checking {self.binary}: {e}"


_compositor: Optional[FFmpegCompositor] = None


def get_compositor() -> FFmpegCompositor:
    global _compositor
    if _compositor is None:
        _compositor = FFmpegCompositor(
            binary=settings.FFMPEG_BINARY,
            opacity=settings.WATERMARK_OPACITY,
        )
    return _compositor
