"""Child-process helper shared by the ffmpeg and yt-dlp wrappers."""
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from clipper_studio.errors import ExternalToolError

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], Optional[Awaitable[None]]]


@dataclass
class ProcessResult:
    """Outcome of a finished child process."""
    returncode: int
    output_tail: List[str]

    @property
    def diagnostics(self) -> str:
        return "\n".join(self.output_tail)


async def run_process(
    cmd: List[str],
    timeout: Optional[float] = None,
    on_line: Optional[LineCallback] = None,
    tail_lines: int = 50,
    check: bool = True,
) -> ProcessResult:
    """
    Run a command with stdout and stderr merged, reading line by line.

    Reading continuously keeps the pipe drained so long-running tools never
    block on a full buffer. Only the last ``tail_lines`` lines are retained.

    Args:
        cmd: Executable and arguments
        timeout: Seconds before the process is killed
        on_line: Optional callback (sync or async) for every decoded line
        tail_lines: Number of trailing output lines kept for diagnostics
        check: Raise ExternalToolError on non-zero exit

    Raises:
        ExternalToolError: Missing binary, timeout, or non-zero exit when ``check``
    """
    tool = cmd[0]
    logger.debug(f"Running: {' '.join(cmd)}")

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except FileNotFoundError as e:
        raise ExternalToolError(f"{tool} is not installed", diagnostics=str(e)) from e

    tail: deque = deque(maxlen=tail_lines)

    async def pump():
        while True:
            line = await proc.stdout.readline()
            if not line:
                break
            line_str = line.decode("utf-8", errors="ignore").rstrip()
            tail.append(line_str)
            if on_line:
                maybe = on_line(line_str)
                if asyncio.iscoroutine(maybe):
                    await maybe
        await proc.wait()

    try:
        await asyncio.wait_for(pump(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        raise ExternalToolError(
            f"{tool} timed out after {timeout:.0f}s",
            diagnostics="\n".join(tail),
        )
    except asyncio.CancelledError:
        _kill(proc)
        await proc.wait()
        raise

    result = ProcessResult(returncode=proc.returncode, output_tail=list(tail))
    if check and result.returncode != 0:
        logger.error(f"{tool} exited with {result.returncode}:\n{result.diagnostics}")
        raise ExternalToolError(
            f"{tool} failed with exit code {result.returncode}",
            diagnostics=result.diagnostics,
        )
    return result


async def capture_output(cmd: List[str], timeout: Optional[float] = None) -> bytes:
    """Run a command and return its stdout, raising on failure."""
    tool = cmd[0]
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ExternalToolError(f"{tool} is not installed", diagnostics=str(e)) from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        _kill(proc)
        await proc.wait()
        raise ExternalToolError(f"{tool} timed out after {timeout:.0f}s")

    if proc.returncode != 0:
        raise ExternalToolError(
            f"{tool} failed with exit code {proc.returncode}",
            diagnostics=stderr.decode("utf-8", errors="ignore")[-4000:],
        )
    return stdout


def _kill(proc):
    try:
        proc.kill()
    except ProcessLookupError:
        pass
