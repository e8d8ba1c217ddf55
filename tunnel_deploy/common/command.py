# tunnel_deploy/common/command.py
from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, Optional, Sequence
from rich.markup import escape
from tunnel_deploy.common import log
from tunnel_deploy.common.models import CommandResult

# Anything with run_command's signature; tests hand in fakes.
Runner = Callable[..., Awaitable[CommandResult]]

async def run_command(
    argv: Sequence[str],
    *,
    allow_failure: bool = False,
    suppress_output: bool = False,
    timeout: Optional[float] = 60.0,
    passthrough: bool = False,
    description: Optional[str] = None,
    cwd: Optional[str] = None,
) -> CommandResult:
    """
    Run one external process and capture both streams in full.

    Never raises for process-level problems: non-zero exit, spawn failure and
    timeout all come back as success=False with the reason in stderr.
    """
    if description and not suppress_output:
        log.step(description)

    pipe = None if passthrough else asyncio.subprocess.PIPE
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv, stdout=pipe, stderr=pipe, cwd=cwd,
        )
    except OSError as e:
        res = CommandResult(False, "", f"{argv[0]}: {e}", None)
        _report(res, allow_failure, suppress_output)
        return res

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        res = CommandResult(False, "", f"timed out after {timeout:g}s", proc.returncode)
        _report(res, allow_failure, suppress_output)
        return res

    res = CommandResult(
        success=proc.returncode == 0,
        stdout=(out or b"").decode(errors="replace"),
        stderr=(err or b"").decode(errors="replace"),
        returncode=proc.returncode,
    )
    _report(res, allow_failure, suppress_output)
    return res

def _report(res: CommandResult, allow_failure: bool, suppress_output: bool):
    if suppress_output:
        return
    if res.success:
        log.ok("Success", indent=2)
    elif allow_failure:
        log.warn("Failed (ignored)", indent=2)
    else:
        log.fail("Failed", indent=2)
        if res.stderr.strip():
            log.console.print(f"  [red]Error:[/red] {escape(res.stderr.strip())}")
            log.get_logger().error(res.stderr.strip())
