# tunnel_deploy/deployer/diagnose.py
from __future__ import annotations
import shlex
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple
import httpx
from rich.markup import escape
from rich.table import Table
from tunnel_deploy.common import log
from tunnel_deploy.common.command import Runner
from tunnel_deploy.common.models import DiagnosticResult, ProbeSnapshot
from tunnel_deploy.deployer.planner import credentialed_tunnels, infer_active_tunnel_id, named_tunnels
from tunnel_deploy.deployer.probes import gather_snapshot, probe_container_networks

@dataclass(frozen=True)
class FixCommands:
    """How remediation commands are spelled for the operator."""
    update_config: str = "tunnel-deploy update-config {tunnel_id}"
    route_dns: str = "docker run --rm -v ./cloudflared:/home/nonroot/.cloudflared cloudflare/cloudflared:latest tunnel route dns {tunnel} {hostname}"
    start: str = "docker compose up -d"
    deploy: str = "tunnel-deploy deploy"

    @staticmethod
    def from_cfg(cfg: dict) -> "FixCommands":
        cli = shlex.join(cfg["tunnel_cli"])
        return FixCommands(
            route_dns=cli + " tunnel route dns {tunnel} {hostname}",
            start=shlex.join([*cfg["compose_cmd"], "up", "-d"]),
        )

def diagnose(snap: ProbeSnapshot, tunnel_name: str, hostnames: Sequence[str],
             networks: Optional[Dict[str, Optional[Tuple[str, ...]]]] = None,
             commands: FixCommands = FixCommands()) -> DiagnosticResult:
    """
    Report-only pass over the planner's rules. Every issue gets exactly one
    recommendation; quick fixes are derived from which kinds of issue came up.
    """
    issues: List[str] = []
    recs: List[str] = []
    fixes: List[str] = []

    def add(issue: str, rec: str):
        issues.append(issue)
        recs.append(rec)

    creds = snap.credentials
    for f in creds.invalid_files:
        add(f"Credential file '{f}' is not named after a tunnel id",
            "Remove or rename it to <tunnel-id>.json")
    for f in creds.pending_invalid_files:
        add(f"File '{f}' in cloudflared/ is not named after a tunnel id",
            "Remove it or rename it to <tunnel-id>.json")
    for f in creds.pending_files:
        add(f"Credential file '{f}' has not been moved into credentials/",
            f"Run: {commands.deploy} (moves credentials into place)")

    named = named_tunnels(snap.tunnels, tunnel_name)
    if not snap.tunnels:
        add("No tunnels found", f"Run: {commands.deploy} (creates tunnel '{tunnel_name}')")
    elif not named:
        add(f"No tunnel named '{tunnel_name}' found", f"Run: {commands.deploy} (creates the tunnel)")
    elif len(named) > 1:
        add(f"Multiple tunnels with same name '{tunnel_name}'",
            "Delete old tunnels or use unique names: " + ", ".join(t.id for t in named))

    with_creds = credentialed_tunnels(snap)
    if not with_creds:
        add("No tunnel has credentials", "Run tunnel creation to generate credentials")
    elif len(with_creds) > 1:
        pointer = snap.pointer_tunnel_id
        keep = f" (pointer file names {pointer})" if pointer else ""
        add("Multiple tunnels have credentials",
            "Clean up old tunnel credentials" + keep)

    config_mismatch = None
    if len(with_creds) == 1 and snap.config.tunnel_id != with_creds[0].id:
        config_mismatch = with_creds[0].id
        add(f"Config tunnel ID ({snap.config.tunnel_id or 'none'}) doesn't match "
            f"tunnel with credentials ({config_mismatch})",
            f"Update config.yml to use tunnel ID: {config_mismatch}")

    missing_dns = [h for h in hostnames if not snap.dns.get(h)]
    for h in missing_dns:
        add(f"DNS record for {h} not found", f"Route DNS for {h} to the tunnel")

    if not snap.containers.running:
        add("Containers not running", f"Run: {commands.start}")
    elif networks is not None:
        # containers docker could not inspect are left out of the comparison
        known = [set(v) for v in networks.values() if v is not None]
        if len(known) > 1 and not set.intersection(*known):
            add("Containers do not share a network", "Recreate them with: " + commands.start)

    if config_mismatch:
        fixes.append("Update config: " + commands.update_config.format(tunnel_id=config_mismatch))
    if missing_dns:
        target = named[0].id if len(named) == 1 else tunnel_name
        for h in missing_dns:
            fixes.append("Setup DNS: " + commands.route_dns.format(tunnel=target, hostname=h))
    if not snap.containers.running:
        fixes.append("Start services: " + commands.start)

    return DiagnosticResult(
        tunnels=snap.tunnels,
        config_tunnel_id=snap.config.tunnel_id,
        active_tunnel_id=infer_active_tunnel_id(snap.pointer_tunnel_id, creds.credential_ids),
        dns_records=dict(snap.dns),
        containers_running=snap.containers.running,
        issues=tuple(issues),
        recommendations=tuple(recs),
        quick_fixes=tuple(fixes),
    )

async def run_diagnose(cfg: dict, runner: Runner,
                       transport: Optional[httpx.AsyncBaseTransport] = None) -> DiagnosticResult:
    log.step("Checking tunnels, credentials, DNS and containers...", icon="🔍")
    snap = await gather_snapshot(cfg, runner, transport)
    networks = await probe_container_networks(cfg, runner) if snap.containers.running else None
    return diagnose(snap, cfg["tunnel_name"], cfg["hostnames"], networks, FixCommands.from_cfg(cfg))

def print_diagnostics(result: DiagnosticResult):
    log.section("📊 Diagnostic Results")

    t = Table(title="Tunnels")
    t.add_column("ID")
    t.add_column("Name")
    t.add_column("Credentials")
    for tun in result.tunnels:
        mark = "[green]✓[/green] " + escape(tun.credentials_path) if tun.has_credentials else "[red]✗[/red]"
        t.add_row(tun.id, tun.name, mark)
    if result.tunnels:
        log.console.print(t)
    else:
        log.fail("No tunnels found", indent=2)

    log.section("⚙️  Configuration")
    log.console.print(f"  Config tunnel ID: {result.config_tunnel_id or '[red]Not found[/red]'}")
    log.console.print(f"  Active tunnel ID: {result.active_tunnel_id or '[red]Not detected[/red]'}")

    log.section("🌐 DNS Records")
    for host, found in result.dns_records.items():
        (log.ok if found else log.fail)(host, indent=2)

    log.section("🐳 Container Status")
    if result.containers_running:
        log.ok("Running", indent=2)
    else:
        log.fail("Not running", indent=2)

    if result.issues:
        log.console.print("\n[red]❌ Issues Found:[/red]")
        for i in result.issues:
            log.console.print(f"  • {escape(i)}")
            log.get_logger().warning(f"issue: {i}")
    else:
        log.console.print("\n[green]✅ No issues found![/green]")

    if result.recommendations:
        log.console.print("\n[yellow]💡 Recommendations:[/yellow]")
        for r in result.recommendations:
            log.console.print(f"  • {escape(r)}")

    if result.quick_fixes:
        log.section("🔧 Quick Fix Commands")
        for n, cmd in enumerate(result.quick_fixes, 1):
            log.console.print(f"  {n}. {escape(cmd)}")
