import subprocess
import re
import logging
import time
from collections import deque
from typing import Callable, List, Optional
from vtq.domain.errors import EncodeError
from vtq.pipeline.compiler import EncodePlan

ProgressCallback = Callable[[int], None]

# Matches both 'time=00:00:05.00' (stats) and 'out_time=00:00:05.000000' (-progress)
TIME_REGEX = re.compile(r"time=(\d+):(\d+):(\d+(?:\.\d+)?)")
OUTPUT_TAIL_LINES = 20
# key=value lines emitted by -progress
PROGRESS_LINE_REGEX = re.compile(r"^[\w.]+=\S*$")

def parse_progress_seconds(line: str) -> Optional[float]:
    match = TIME_REGEX.search(line)
    if not match:
        return None
    h, m, s = match.groups()
    return int(h) * 3600 + int(m) * 60 + float(s)

class FFmpegAdapter:
    """Runs the encoder for a compiled EncodePlan."""

    def __init__(self, ffmpeg_path: str = "ffmpeg"):
        self.ffmpeg_path = ffmpeg_path
        self.logger = logging.getLogger(__name__)

    def _build_command(self, plan: EncodePlan) -> List[str]:
        cmd = plan.to_command(self.ffmpeg_path)
        # Machine-readable progress on stdout, errors only on stderr
        cmd[2:2] = ["-progress", "pipe:1", "-nostats", "-loglevel", "error"]
        return cmd

    def encode(self, plan: EncodePlan, on_progress: Optional[ProgressCallback] = None):
        """Runs ffmpeg to completion. Raises EncodeError on failure."""
        cmd = self._build_command(plan)
        name = plan.input_path.name
        start_time = time.monotonic()
        self.logger.debug(f"FFMPEG_START: {name}: {' '.join(cmd)}")

        plan.manifest_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                encoding="utf-8",
                errors="replace",
                bufsize=1
            )
        except OSError as e:
            raise EncodeError(f"ffmpeg could not be started: {e}") from e

        tail = deque(maxlen=OUTPUT_TAIL_LINES)
        try:
            self._read_output(process, plan, tail, on_progress)
        except BaseException:
            # Reap the encoder before propagating
            process.kill()
            process.wait()
            raise

        process.wait()
        elapsed = time.monotonic() - start_time
        output_tail = "\n".join(tail)

        if process.returncode != 0:
            self.logger.debug(f"FFMPEG_END: {name} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            message = f"ffmpeg exited with code {process.returncode}"
            if output_tail:
                message = f"{message}: {output_tail}"
            raise EncodeError(message, returncode=process.returncode, output_tail=output_tail)

        if not plan.manifest_path.exists():
            raise EncodeError(
                f"ffmpeg succeeded but manifest not found: {plan.manifest_path}",
                returncode=process.returncode,
                output_tail=output_tail,
            )

        self.logger.debug(f"FFMPEG_END: {name} status=completed elapsed={elapsed:.2f}s")

    def _read_output(self, process: subprocess.Popen, plan: EncodePlan, tail: deque,
                     on_progress: Optional[ProgressCallback]):
        last_percent = -1
        for line in process.stdout:
            line = line.strip()
            if not line:
                continue
            if line == "progress=end":
                percent = 100
            else:
                seconds = parse_progress_seconds(line)
                if seconds is None:
                    if not PROGRESS_LINE_REGEX.match(line):
                        tail.append(line)
                    continue
                if plan.duration_seconds <= 0:
                    continue
                percent = int(min(100.0, max(0.0, seconds / plan.duration_seconds * 100)))
            if percent != last_percent:
                last_percent = percent
                if on_progress:
                    on_progress(percent)

    def check_available(self) -> bool:
        """True when the ffmpeg binary runs."""
        try:
            result = subprocess.run(
                [self.ffmpeg_path, "-version"], capture_output=True, encoding="utf-8", errors="replace", timeout=6
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.error(f"ffmpeg not available: {e}")
            return False
        if result.returncode != 0:
            self.logger.error(f"ffmpeg -version returned {result.returncode}: {result.stderr[:200]}")
            return False
        return True
