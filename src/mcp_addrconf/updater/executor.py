"""Executor for updater scripts.

Runs the external backup, restore and install scripts of an updater.
A script run never raises: failures come back as a failed ScriptResult
so the engine can decide what to retry.
"""
import asyncio
import contextlib
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from typing import Optional

from ..config.inventory import DEFAULT_SCRIPT_TIMEOUT
from ..config.schema import UpdateKind
from ..exceptions import ScriptFailureError
from ..utils.logging_config import timed_section
from ..utils.retry import with_retry
from .schema import ScriptAction

logger = logging.getLogger(__name__)


@dataclass
class ScriptResult:
    """Result of one script run."""
    success: bool
    command: list[str] = field(default_factory=list)
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    timed_out: bool = False
    duration_ms: float = 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "command": self.command,
            "returncode": self.returncode,
            "error": self.error,
            "timed_out": self.timed_out,
            "duration_ms": round(self.duration_ms, 2),
        }


class ScriptExecutor:
    """Run updater scripts as subprocesses with a timeout."""

    def __init__(
        self,
        timeout: float = DEFAULT_SCRIPT_TIMEOUT,
        artifact_dir: Optional[str] = None,
    ):
        """
        Initialize executor.

        Args:
            timeout: Default per-script timeout in seconds
            artifact_dir: Where settings artifacts are written (default: system temp)
        """
        self.timeout = timeout
        self.artifact_dir = artifact_dir

    async def run(
        self,
        kind: UpdateKind,
        action: ScriptAction,
        argv: list[str],
        artifact: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ScriptResult:
        """
        Run one script.

        Args:
            kind: Update kind the script belongs to
            action: backup, restore or install
            argv: Script command line
            artifact: Settings file content; written to a temporary file
                whose path is appended to the command line
            timeout: Override of the default timeout

        Returns:
            ScriptResult with success/failure and output
        """
        action = ScriptAction(action)
        try:
            async with timed_section(f"script:{action.value}", subject=kind.value):
                return await self._execute(
                    kind, action, argv, artifact,
                    self.timeout if timeout is None else timeout,
                )
        except ScriptFailureError as e:
            return e.result

    async def _execute(
        self,
        kind: UpdateKind,
        action: ScriptAction,
        argv: list[str],
        artifact: Optional[str],
        timeout: float,
    ) -> ScriptResult:
        command = list(argv)
        artifact_path = None
        if artifact is not None:
            artifact_path = self._write_artifact(kind, artifact)
            command.append(artifact_path)

        env = dict(os.environ)
        env["ADDRCONF_UPDATER"] = kind.value
        env["ADDRCONF_ACTION"] = action.value

        logger.debug(f"Running {kind.value} {action.value}: {' '.join(command)}")
        start = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            try:
                proc = await self._spawn(command, env)
            except OSError as e:
                raise ScriptFailureError(
                    f"cannot run {command[0]}: {e}",
                    ScriptResult(success=False, command=command, error=str(e), duration_ms=elapsed()),
                )

            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
            except asyncio.TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
                message = f"timed out after {timeout:g}s"
                raise ScriptFailureError(
                    message,
                    ScriptResult(
                        success=False,
                        command=command,
                        returncode=proc.returncode,
                        error=message,
                        timed_out=True,
                        duration_ms=elapsed(),
                    ),
                )

            result = ScriptResult(
                success=proc.returncode == 0,
                command=command,
                returncode=proc.returncode,
                stdout=stdout.decode(errors="replace").strip(),
                stderr=stderr.decode(errors="replace").strip(),
                duration_ms=elapsed(),
            )
            if not result.success:
                result.error = f"exited with status {proc.returncode}"
                if result.stderr:
                    result.error += f": {result.stderr.splitlines()[-1]}"
                raise ScriptFailureError(result.error, result)
            return result

        finally:
            if artifact_path is not None:
                try:
                    os.unlink(artifact_path)
                except OSError as e:
                    logger.warning(f"Failed to remove artifact {artifact_path}: {e}")

    @with_retry()
    async def _spawn(self, command: list[str], env: dict) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )

    def _write_artifact(self, kind: UpdateKind, content: str) -> str:
        fd, path = tempfile.mkstemp(
            prefix=f"addrconf-{kind.value}-",
            suffix=".conf",
            dir=self.artifact_dir,
        )
        with os.fdopen(fd, "w") as f:
            f.write(content)
        return path
