# tunnel_deploy/deployer/deploy.py
from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, Optional
import httpx
from rich.markup import escape
from rich.table import Table
from tunnel_deploy.common import log
from tunnel_deploy.common.command import Runner
from tunnel_deploy.common.models import DeployReport, ReconciliationPlan
from tunnel_deploy.common.util import poll_until
from tunnel_deploy.deployer.actions import LABELS, ActionExecutor, AmbiguousStateError, FatalActionError
from tunnel_deploy.deployer.planner import plan as build_plan
from tunnel_deploy.deployer.probes import gather_snapshot, probe_containers
from tunnel_deploy.deployer.verify import checks_from_cfg, print_verification, verify_endpoints

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_VERIFY_FAILED = 2
EXIT_AMBIGUOUS = 3

STATUS_STYLE = {
    "required": "[yellow]required[/yellow]",
    "already_satisfied": "[green]already satisfied[/green]",
    "skipped_ambiguous": "[red]skipped (ambiguous)[/red]",
}

def print_plan(p: ReconciliationPlan):
    t = Table(title="Reconciliation Plan")
    t.add_column("#", justify="right")
    t.add_column("Action")
    t.add_column("Target")
    t.add_column("Status")
    t.add_column("Reason")
    for n, a in enumerate(p.actions, 1):
        t.add_row(str(n), LABELS[a.kind], a.target or "-", STATUS_STYLE[a.status], a.reason)
    log.console.print(t)
    for issue in p.issues:
        log.fail(issue)

async def make_plan(cfg: dict, runner: Runner,
                    transport: Optional[httpx.AsyncBaseTransport] = None) -> ReconciliationPlan:
    snap = await gather_snapshot(cfg, runner, transport)
    return build_plan(snap, cfg["tunnel_name"], cfg["hostnames"])

async def wait_and_verify(cfg: dict, runner: Runner, transport=None,
                          sleep: Callable[[float], Awaitable] = asyncio.sleep):
    """
    Poll until both containers run, then poll the endpoints until all pass.
    Both loops share one deadline. Returns (PollOutcome, VerificationReport or None).
    """
    checks = checks_from_cfg(cfg)
    marker = cfg["edge_server_marker"]
    loop = asyncio.get_running_loop()
    deadline = loop.time() + cfg["settle_timeout_sec"]

    async def containers_up():
        st = await probe_containers(cfg, runner)
        return st.running, st

    async def endpoints_ok():
        rep = await verify_endpoints(checks, transport, marker)
        return rep.ok, rep

    log.step("Waiting for services to start...", icon="⏳")
    waited = await poll_until(containers_up, cfg["settle_timeout_sec"],
                              cfg["poll_initial_delay_sec"], cfg["poll_max_delay_sec"], sleep=sleep)
    if not waited.ok:
        log.fail(f"containers not running after {waited.elapsed:.0f}s ({waited.attempts} checks)")
        return waited, None
    log.ok("Services started")

    log.step("Verifying deployment...", icon="🔍")
    remaining = max(0.0, deadline - loop.time())
    outcome = await poll_until(endpoints_ok, remaining,
                               cfg["poll_initial_delay_sec"], cfg["poll_max_delay_sec"], sleep=sleep, jitter=True)
    return outcome, outcome.last

async def run_deploy(cfg: dict, runner: Runner, logger, transport=None,
                     sleep: Callable[[float], Awaitable] = asyncio.sleep) -> DeployReport:
    log.console.print("[bold cyan]🚀 Smart Cloudflare Tunnel Deployment[/bold cyan]\n")

    p = await make_plan(cfg, runner, transport)
    print_plan(p)
    logger.info(f"plan: {len(p.required())} required of {len(p.actions)} actions, issues={list(p.issues)}")

    executor = ActionExecutor(cfg, runner, logger)
    report = DeployReport(exit_code=EXIT_OK, plan=p)
    try:
        await executor.execute(p)
    except AmbiguousStateError as e:
        report.actions = executor.results
        report.exit_code = EXIT_AMBIGUOUS
        report.error = str(e)
        log.console.print("\n[red]❌ Deployment stopped: state needs an operator decision[/red]")
        for issue in e.issues:
            log.console.print(f"  • {escape(issue)}")
        log.console.print("Run [bold]tunnel-deploy diagnose[/bold] for recommendations.")
        return report
    except FatalActionError as e:
        report.actions = executor.results
        report.exit_code = EXIT_FATAL
        report.error = e.detail
        log.console.print(f"\n[red]❌ {escape(str(e))}[/red]")
        return report
    report.actions = executor.results

    warnings = [r for r in report.actions if r.outcome == "warning"]
    if warnings:
        log.warn(f"{len(warnings)} action(s) finished with warnings, continuing")
    log.ok(f"Actions complete: {len(report.actions)} processed")

    outcome, verification = await wait_and_verify(cfg, runner, transport, sleep)
    report.verification = verification
    if verification is not None:
        print_verification(verification, cfg["edge_server_marker"])

    if outcome.ok:
        log.console.print("\n[green]🎉 Deployment successful![/green]")
        log.console.print("Your service is now live at:")
        for ch in checks_from_cfg(cfg):
            log.console.print(f"  • {ch.url}")
        return report

    report.exit_code = EXIT_VERIFY_FAILED
    report.error = "verification timed out" if outcome.timed_out else "verification failed"
    log.console.print("\n[yellow]⚠️ Deployment completed but verification failed[/yellow]")
    log.console.print("Try again later with: tunnel-deploy verify")
    return report
