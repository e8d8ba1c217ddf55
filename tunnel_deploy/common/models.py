# tunnel_deploy/common/models.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Literal, Dict, Tuple, Any

ActionKind = Literal[
    "relocate_credentials",
    "authenticate",
    "create_tunnel",
    "rewrite_config",
    "route_dns",
    "build_and_start",
]

ActionStatus = Literal[
    "required",
    "already_satisfied",
    "skipped_ambiguous",
]

ActionOutcome = Literal[
    "ok",
    "already",
    "warning",
]

EndpointOutcome = Literal[
    "success",
    "wrong_status",
    "missing_content",
    "timeout",
    "dns_unresolvable",
    "connection_refused",
    "other_error",
]

@dataclass(frozen=True)
class CommandResult:
    success: bool
    stdout: str = ""
    stderr: str = ""
    returncode: Optional[int] = None

    @property
    def output(self) -> str:
        return self.stdout + self.stderr

@dataclass(frozen=True)
class CredentialState:
    """
    Local credential files. Only names shaped like a tunnel id count as
    credentials; everything else ends up in the invalid_* tuples.
    """
    cert_present: bool
    credential_ids: Tuple[str, ...] = ()
    invalid_files: Tuple[str, ...] = ()
    pending_files: Tuple[str, ...] = ()          # valid <uuid>.json still in the cloudflared root
    pending_invalid_files: Tuple[str, ...] = ()

@dataclass(frozen=True)
class TunnelInfo:
    """
    One registry row (runtime snapshot, never cached).
    """
    id: str
    name: str
    has_credentials: bool = False
    credentials_path: Optional[str] = None

@dataclass(frozen=True)
class ConfigState:
    exists: bool
    tunnel_id: Optional[str] = None
    credentials_file: Optional[str] = None

@dataclass(frozen=True)
class ContainerState:
    running: bool
    names: Tuple[str, ...] = ()

@dataclass(frozen=True)
class ProbeSnapshot:
    credentials: CredentialState
    tunnels: Tuple[TunnelInfo, ...]
    config: ConfigState
    dns: Dict[str, bool]
    containers: ContainerState
    pointer_tunnel_id: Optional[str] = None

@dataclass(frozen=True)
class PlannedAction:
    kind: ActionKind
    status: ActionStatus
    target: Optional[str] = None        # filename for relocation, hostname for dns
    tunnel_id: Optional[str] = None
    reason: str = ""

@dataclass(frozen=True)
class ReconciliationPlan:
    actions: Tuple[PlannedAction, ...]
    issues: Tuple[str, ...] = ()
    tunnel_id: Optional[str] = None
    credentialed_tunnel_id: Optional[str] = None
    active_tunnel_id: Optional[str] = None

    def required(self) -> Tuple[PlannedAction, ...]:
        return tuple(a for a in self.actions if a.status == "required")

    @property
    def fully_satisfied(self) -> bool:
        return all(a.status == "already_satisfied" for a in self.actions)

@dataclass(frozen=True)
class ActionResult:
    kind: ActionKind
    outcome: ActionOutcome
    target: Optional[str] = None
    detail: str = ""

@dataclass(frozen=True)
class DiagnosticResult:
    tunnels: Tuple[TunnelInfo, ...]
    config_tunnel_id: Optional[str]
    active_tunnel_id: Optional[str]
    dns_records: Dict[str, bool]
    containers_running: bool
    issues: Tuple[str, ...] = ()
    recommendations: Tuple[str, ...] = ()
    quick_fixes: Tuple[str, ...] = ()

    @property
    def exit_code(self) -> int:
        return 1 if self.issues else 0

@dataclass(frozen=True)
class EndpointCheck:
    name: str
    url: str
    method: str = "GET"
    expected_status: int = 200
    expected_content: Optional[str] = None
    timeout_sec: float = 10.0

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "EndpointCheck":
        return EndpointCheck(
            name=str(d.get("name") or d["url"]),
            url=str(d["url"]),
            method=str(d.get("method", "GET")).upper(),
            expected_status=int(d.get("expected_status", 200)),
            expected_content=d.get("expected_content"),
            timeout_sec=float(d.get("timeout_sec", 10)),
        )

@dataclass(frozen=True)
class EndpointResult:
    check: EndpointCheck
    outcome: EndpointOutcome
    status_code: Optional[int] = None
    detail: str = ""
    via_edge: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome == "success"

@dataclass(frozen=True)
class VerificationReport:
    results: Tuple[EndpointResult, ...]

    @property
    def ok(self) -> bool:
        return bool(self.results) and all(r.ok for r in self.results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.ok)

@dataclass(frozen=True)
class PollOutcome:
    ok: bool
    attempts: int
    elapsed: float
    timed_out: bool
    last: Any = None

@dataclass
class DeployReport:
    exit_code: int
    plan: Optional[ReconciliationPlan] = None
    actions: list = field(default_factory=list)
    verification: Optional[VerificationReport] = None
    error: str = ""
