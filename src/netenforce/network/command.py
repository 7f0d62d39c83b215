"""Run external commands."""

from __future__ import annotations

import asyncio
import logging

from pydantic import BaseModel

logger = logging.getLogger("netenforce")


class CommandResult(BaseModel):
    """Exit status and output of a finished command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def error(self) -> str:
        """Return a short description of a failure."""
        output = self.stderr.strip() or self.stdout.strip()
        return f"'{' '.join(self.args)}' exited with {self.returncode}: {output}"


async def run(*args: str, stdin: str | None = None) -> CommandResult:
    """Run a command without a shell and wait for it to finish.

    A command that can't be started is reported as exit status 127, it
    doesn't raise.
    """
    logger.debug("Running %s", args)
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return CommandResult(args=list(args), returncode=127, stderr=str(e))

    stdout, stderr = await proc.communicate(
        stdin.encode() if stdin is not None else None,
    )
    return CommandResult(
        args=list(args),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
