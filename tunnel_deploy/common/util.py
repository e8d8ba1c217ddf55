# tunnel_deploy/common/util.py
from __future__ import annotations
import asyncio, os, random, time
from typing import Any, Awaitable, Callable, List, Optional, Tuple
from tunnel_deploy.common.models import PollOutcome

def clamp(n: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, n))

def tail_file(path: str, lines: int = 400) -> str:
    """
    Return last N lines of a file. Safe for small/medium logs.
    """
    try:
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            data = f.readlines()
        return "".join(data[-lines:])
    except OSError as e:
        return f"cannot read log {path}: {e}"

def ensure_dir(p: str) -> bool:
    """Create p if needed. Returns True when it had to be created."""
    if os.path.isdir(p):
        return False
    os.makedirs(p, exist_ok=True)
    return True

def files_with_extension(dir_path: str, ext: str) -> List[str]:
    # missing or unreadable directory == no files
    try:
        names = os.listdir(dir_path)
    except OSError:
        return []
    return sorted(n for n in names if n.endswith(ext) and os.path.isfile(os.path.join(dir_path, n)))

async def poll_until(
    check: Callable[[], Awaitable[Tuple[bool, Any]]],
    timeout: float,
    initial_delay: float = 1.0,
    max_delay: float = 15.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    jitter: bool = False,
) -> PollOutcome:
    """
    Call check() until it reports done or the deadline passes.

    Waits grow exponentially from initial_delay up to max_delay and are cut
    short so no sleep runs past the deadline. check() returns (done, value);
    the last value is handed back either way.
    """
    start = clock()
    deadline = start + timeout
    delay = initial_delay
    attempts = 0
    last: Optional[Any] = None

    while True:
        attempts += 1
        done, last = await check()
        if done:
            return PollOutcome(True, attempts, clock() - start, False, last)

        remaining = deadline - clock()
        if remaining <= 0:
            return PollOutcome(False, attempts, clock() - start, True, last)

        wait = delay * (0.7 + random.random() * 0.6) if jitter else delay
        await sleep(clamp(wait, 0, remaining))
        delay = min(delay * 2, max_delay)
