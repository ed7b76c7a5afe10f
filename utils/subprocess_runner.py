import asyncio

from config import settings
from exceptions import CollaboratorError, ToolTimeoutError
from utils.logging import get_logger

logger = get_logger("collaborator")


async def run_collaborator(cmd: list[str], input_data: bytes, timeout: float | None = None) -> bytes:
    """Pipe ``input_data`` through an external program and return its stdout.

    The process is killed if it outlives ``timeout`` or if the awaiting
    request is cancelled, so no collaborator survives its request.

    Raises:
        CollaboratorError: The binary is missing or exited non-zero.
        ToolTimeoutError: No answer within ``timeout`` seconds
            (defaults to settings.tool_timeout_seconds).
    """
    name = cmd[0]
    if timeout is None:
        timeout = settings.tool_timeout_seconds

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise CollaboratorError(f"{name} is not installed", collaborator=name) from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(input=input_data), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        raise ToolTimeoutError(
            f"{name} timed out after {timeout}s",
            collaborator=name,
            timeout=timeout,
        )
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    if proc.returncode != 0:
        logger.warning(
            f"{name} exited with code {proc.returncode}",
            extra={"context": {"stderr": stderr.decode(errors="replace")[:500]}},
        )
        raise CollaboratorError(
            f"{name} failed with exit code {proc.returncode}",
            collaborator=name,
            exit_code=proc.returncode,
        )
    return stdout


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
        await proc.wait()
