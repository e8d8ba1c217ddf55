# tunnel_deploy/deployer/planner.py
"""
Reconciliation planner: probe snapshot in, ordered action list out.

Pure: no I/O, no clock, no hidden state. The same snapshot always gives an
equal plan. Actions come out in execution order:

    relocate_credentials*  authenticate  create_tunnel  rewrite_config
    route_dns (per hostname)  build_and_start

Things automation must not guess at (several tunnels sharing the name,
zero or several tunnels holding credentials) become issues, and the actions
that depend on them are tagged skipped_ambiguous.
"""
from __future__ import annotations
from typing import List, Optional, Sequence, Set
from tunnel_deploy.common.models import PlannedAction, ProbeSnapshot, ReconciliationPlan, TunnelInfo

CREDENTIAL_EXT = ".json"

def named_tunnels(tunnels: Sequence[TunnelInfo], name: str) -> List[TunnelInfo]:
    return [t for t in tunnels if t.name == name]

def local_credential_ids(snap: ProbeSnapshot) -> Set[str]:
    """Ids with a credential file in place or waiting in the cloudflared root."""
    ids = set(snap.credentials.credential_ids)
    ids.update(n[: -len(CREDENTIAL_EXT)] for n in snap.credentials.pending_files)
    return ids

def credentialed_tunnels(snap: ProbeSnapshot) -> List[TunnelInfo]:
    ids = local_credential_ids(snap)
    seen, out = set(), []
    for t in snap.tunnels:
        if t.id in ids and t.id not in seen:
            seen.add(t.id)
            out.append(t)
    return out

def infer_active_tunnel_id(pointer: Optional[str], credential_ids: Sequence[str]) -> Optional[str]:
    # pointer wins; otherwise only an unambiguous single credential counts
    if pointer:
        return pointer
    if len(credential_ids) == 1:
        return credential_ids[0]
    return None

def plan(snap: ProbeSnapshot, tunnel_name: str, hostnames: Sequence[str]) -> ReconciliationPlan:
    actions: List[PlannedAction] = []
    issues: List[str] = []
    in_place = set(snap.credentials.credential_ids)

    # 1. credential files left in the cloudflared root
    for fname in sorted(snap.credentials.pending_files):
        tid = fname[: -len(CREDENTIAL_EXT)]
        if tid in in_place:
            actions.append(PlannedAction("relocate_credentials", "already_satisfied", fname, tid,
                                         "destination already holds this file"))
        else:
            actions.append(PlannedAction("relocate_credentials", "required", fname, tid,
                                         "credential file not in credentials dir"))

    # 2. account certificate
    if snap.credentials.cert_present:
        actions.append(PlannedAction("authenticate", "already_satisfied", reason="certificate present"))
    else:
        actions.append(PlannedAction("authenticate", "required", reason="no origin certificate"))

    # 3. the tunnel itself
    named = named_tunnels(snap.tunnels, tunnel_name)
    tunnel_id: Optional[str] = None
    name_ambiguous = False
    creating = False
    if not named:
        creating = True
        actions.append(PlannedAction("create_tunnel", "required", tunnel_name,
                                     reason=f"no tunnel named '{tunnel_name}'"))
    elif len(named) == 1:
        tunnel_id = named[0].id
        actions.append(PlannedAction("create_tunnel", "already_satisfied", tunnel_name, tunnel_id,
                                     "tunnel exists"))
    else:
        name_ambiguous = True
        ids = ", ".join(t.id for t in named)
        issues.append(f"Multiple tunnels with same name '{tunnel_name}' ({ids})")
        actions.append(PlannedAction("create_tunnel", "skipped_ambiguous", tunnel_name,
                                     reason="multiple tunnels with same name"))

    # 4 + 5. exactly one credentialed tunnel, and the config must point at it
    credentialed_id: Optional[str] = None
    if creating:
        # the new tunnel's credential becomes the unique one
        actions.append(PlannedAction("rewrite_config", "required",
                                     reason="config must point at the tunnel being created"))
    else:
        creds = credentialed_tunnels(snap)
        if not creds:
            issues.append("No tunnel has credentials")
            actions.append(PlannedAction("rewrite_config", "skipped_ambiguous",
                                         reason="no tunnel has credentials"))
        elif len(creds) > 1:
            issues.append("Multiple tunnels have credentials (" + ", ".join(t.id for t in creds) + ")")
            actions.append(PlannedAction("rewrite_config", "skipped_ambiguous",
                                         reason="multiple tunnels have credentials"))
        else:
            credentialed_id = creds[0].id
            if snap.config.tunnel_id == credentialed_id:
                actions.append(PlannedAction("rewrite_config", "already_satisfied", None, credentialed_id,
                                             "config matches credentialed tunnel"))
            else:
                actions.append(PlannedAction("rewrite_config", "required", None, credentialed_id,
                                             f"config names {snap.config.tunnel_id or 'no tunnel'}"))

    # 6. DNS per hostname
    for host in hostnames:
        if snap.dns.get(host):
            actions.append(PlannedAction("route_dns", "already_satisfied", host, tunnel_id, "resolves"))
        elif name_ambiguous:
            actions.append(PlannedAction("route_dns", "skipped_ambiguous", host,
                                         reason="tunnel id unresolved"))
        else:
            actions.append(PlannedAction("route_dns", "required", host, tunnel_id, "does not resolve"))

    # 7. containers
    if snap.containers.running:
        actions.append(PlannedAction("build_and_start", "already_satisfied", reason="containers running"))
    else:
        actions.append(PlannedAction("build_and_start", "required", reason="containers not running"))

    return ReconciliationPlan(
        actions=tuple(actions),
        issues=tuple(issues),
        tunnel_id=tunnel_id,
        credentialed_tunnel_id=credentialed_id,
        active_tunnel_id=infer_active_tunnel_id(snap.pointer_tunnel_id, snap.credentials.credential_ids),
    )
