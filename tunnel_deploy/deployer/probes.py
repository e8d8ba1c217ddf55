# tunnel_deploy/deployer/probes.py
from __future__ import annotations
import asyncio, json, os
from typing import Dict, List, Optional, Tuple
import httpx
from tunnel_deploy.common.command import Runner
from tunnel_deploy.common.models import (
    ConfigState, ContainerState, CredentialState, ProbeSnapshot, TunnelInfo,
)
from tunnel_deploy.common.state import load_pointer
from tunnel_deploy.common.util import files_with_extension
from tunnel_deploy.deployer.routing_config import read_config_state
from tunnel_deploy.deployer.tunnel_list import DEFAULT_PARSER, TunnelListFormat, is_valid_tunnel_id

CREDENTIAL_EXT = ".json"

def _split_valid(names: List[str]) -> Tuple[Tuple[str, ...], Tuple[str, ...]]:
    valid, invalid = [], []
    for n in names:
        stem = n[: -len(CREDENTIAL_EXT)]
        (valid if is_valid_tunnel_id(stem) else invalid).append(n)
    return tuple(valid), tuple(invalid)

def probe_credentials(cfg: dict) -> CredentialState:
    valid, invalid = _split_valid(files_with_extension(cfg["credentials_dir"], CREDENTIAL_EXT))
    pending, pending_invalid = _split_valid(files_with_extension(cfg["cloudflared_dir"], CREDENTIAL_EXT))
    return CredentialState(
        cert_present=os.path.isfile(cfg["cert_path"]),
        credential_ids=tuple(n[: -len(CREDENTIAL_EXT)] for n in valid),
        invalid_files=invalid,
        pending_files=pending,
        pending_invalid_files=pending_invalid,
    )

def probe_config(cfg: dict) -> ConfigState:
    return read_config_state(cfg["config_path"])

def read_pointer(cfg: dict) -> Optional[str]:
    p = load_pointer(cfg["pointer_path"])
    return p.activeTunnelId if p else None

async def probe_tunnels(cfg: dict, runner: Runner, credentials: CredentialState,
                        parser: TunnelListFormat = DEFAULT_PARSER) -> List[TunnelInfo]:
    res = await runner(
        [*cfg["tunnel_cli"], "tunnel", "list"],
        suppress_output=True, timeout=cfg["command_timeout_sec"], cwd=cfg["project_dir"],
    )
    if not res.success:
        return []

    have = set(credentials.credential_ids)
    tunnels = []
    for tid, name in parser.parse(res.stdout):
        path = os.path.join(cfg["credentials_dir"], f"{tid}{CREDENTIAL_EXT}") if tid in have else None
        tunnels.append(TunnelInfo(id=tid, name=name, has_credentials=path is not None, credentials_path=path))
    return tunnels

async def probe_dns(cfg: dict, hostname: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    try:
        async with httpx.AsyncClient(timeout=cfg["dns_timeout_sec"], transport=transport) as c:
            r = await c.get(
                cfg["dns_resolver_url"],
                params={"name": hostname, "type": "A"},
                headers={"accept": "application/dns-json"},
            )
            data = r.json()
    except (httpx.HTTPError, ValueError):
        return False
    if not isinstance(data, dict):
        return False
    return data.get("Status") == 0 and bool(data.get("Answer"))

async def probe_dns_all(cfg: dict, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, bool]:
    hosts = cfg["hostnames"]
    found = await asyncio.gather(*(probe_dns(cfg, h, transport) for h in hosts))
    return dict(zip(hosts, found))

async def probe_containers(cfg: dict, runner: Runner) -> ContainerState:
    res = await runner(
        ["docker", "ps", "--format", "{{.Names}}"],
        suppress_output=True, timeout=cfg["command_timeout_sec"],
    )
    if not res.success:
        return ContainerState(running=False)
    seen = {line.strip() for line in res.stdout.splitlines() if line.strip()}
    present = tuple(n for n in cfg["containers"] if n in seen)
    return ContainerState(running=set(cfg["containers"]) <= seen, names=present)

async def probe_container_networks(cfg: dict, runner: Runner) -> Dict[str, Optional[Tuple[str, ...]]]:
    """Network names each configured container is attached to (None when inspect fails)."""
    async def one(name: str) -> Optional[Tuple[str, ...]]:
        res = await runner(
            ["docker", "inspect", name, "--format", "{{json .NetworkSettings.Networks}}"],
            suppress_output=True, timeout=cfg["command_timeout_sec"],
        )
        if not res.success:
            return None
        try:
            nets = json.loads(res.stdout.strip() or "null")
        except ValueError:
            return None
        return tuple(sorted(nets)) if isinstance(nets, dict) else None

    names = cfg["containers"]
    found = await asyncio.gather(*(one(n) for n in names))
    return dict(zip(names, found))

async def gather_snapshot(cfg: dict, runner: Runner,
                          transport: Optional[httpx.AsyncBaseTransport] = None) -> ProbeSnapshot:
    # local reads are instant; the three remote probes run side by side
    creds = probe_credentials(cfg)
    config = probe_config(cfg)
    pointer = read_pointer(cfg)

    tunnels, dns, containers = await asyncio.gather(
        probe_tunnels(cfg, runner, creds),
        probe_dns_all(cfg, transport),
        probe_containers(cfg, runner),
    )
    return ProbeSnapshot(
        credentials=creds,
        tunnels=tuple(tunnels),
        config=config,
        dns=dns,
        containers=containers,
        pointer_tunnel_id=pointer,
    )
