# tunnel_deploy/deployer/verify.py
from __future__ import annotations
import asyncio
from typing import Iterable, List, Optional
import httpx
from rich.markup import escape
from rich.table import Table
from tunnel_deploy.common import log
from tunnel_deploy.common.models import EndpointCheck, EndpointResult, VerificationReport

USER_AGENT = "tunnel-deploy-verification/1.0"

DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated with hostname",
    "enotfound",
)
REFUSED_MARKERS = ("connection refused", "econnrefused", "errno 111", "actively refused")

def checks_from_cfg(cfg: dict) -> List[EndpointCheck]:
    return [EndpointCheck.from_dict(d) for d in cfg["endpoints"]]

def classify_connect_error(e: Exception) -> str:
    msg = f"{e} {e.__cause__ or ''}".lower()
    if any(m in msg for m in DNS_MARKERS):
        return "dns_unresolvable"
    if any(m in msg for m in REFUSED_MARKERS):
        return "connection_refused"
    return "other_error"

async def check_endpoint(client: httpx.AsyncClient, check: EndpointCheck,
                         edge_marker: str = "cloudflare") -> EndpointResult:
    """
    One request, one outcome. The timeout cancels the request (and the body
    read) as a whole rather than per socket operation.
    """
    async def fetch():
        r = await client.request(check.method, check.url, headers={"user-agent": USER_AGENT})
        return r, r.text

    try:
        r, body = await asyncio.wait_for(fetch(), timeout=check.timeout_sec)
    except (asyncio.TimeoutError, httpx.TimeoutException):
        return EndpointResult(check, "timeout", detail=f"no response within {check.timeout_sec:g}s")
    except httpx.ConnectError as e:
        return EndpointResult(check, classify_connect_error(e), detail=str(e))
    except httpx.HTTPError as e:
        return EndpointResult(check, "other_error", detail=str(e) or type(e).__name__)

    server = r.headers.get("server", "")
    via_edge = edge_marker.lower() in server.lower()

    if r.status_code != check.expected_status:
        return EndpointResult(check, "wrong_status", r.status_code,
                              f"status {r.status_code} (expected {check.expected_status})", via_edge)
    if check.expected_content and check.expected_content not in body:
        return EndpointResult(check, "missing_content", r.status_code,
                              f'missing expected text "{check.expected_content}"', via_edge)
    return EndpointResult(check, "success", r.status_code, "", via_edge)

async def verify_endpoints(checks: Iterable[EndpointCheck],
                           transport: Optional[httpx.AsyncBaseTransport] = None,
                           edge_marker: str = "cloudflare") -> VerificationReport:
    checks = list(checks)
    # per-check deadlines come from check_endpoint, not the client
    async with httpx.AsyncClient(transport=transport, timeout=None, follow_redirects=False) as c:
        results = await asyncio.gather(*(check_endpoint(c, ch, edge_marker) for ch in checks))
    return VerificationReport(tuple(results))

async def check_connectivity(url: str, transport: Optional[httpx.AsyncBaseTransport] = None,
                             timeout: float = 5.0) -> bool:
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as c:
            r = await c.get(url)
    except httpx.HTTPError:
        return False
    return r.is_success

def print_verification(report: VerificationReport, edge_marker: str = "cloudflare"):
    for res in report.results:
        ch = res.check
        log.console.print(f"[cyan]Testing:[/cyan] {escape(ch.name)} ({escape(ch.url)})")
        if res.ok:
            log.ok(f"Status: {res.status_code}", indent=2)
            if ch.expected_content:
                log.ok("Content: contains expected text", indent=2)
        else:
            log.fail(f"{res.outcome}: {res.detail}", indent=2)
        if res.status_code is not None:
            if res.via_edge:
                log.ok(f"Routing: through {edge_marker}", indent=2)
            else:
                log.warn(f"Routing: may not be through {edge_marker}", indent=2)

    t = Table(title="Verification Summary")
    t.add_column("Endpoint")
    t.add_column("URL")
    t.add_column("Outcome")
    t.add_column("Status", justify="right")
    for res in report.results:
        color = "green" if res.ok else "red"
        t.add_row(res.check.name, res.check.url, f"[{color}]{res.outcome}[/{color}]",
                  "-" if res.status_code is None else str(res.status_code))
    log.console.print(t)
    log.console.print(f"  [green]✓[/green] Successful: {report.success_count}/{len(report.results)}")
