# tunnel_deploy/common/state.py
import os, json, time
from dataclasses import dataclass, asdict, field
from typing import List, Optional

@dataclass
class TunnelPointer:
    """
    Small record of which tunnel the last successful config update used.
    Stored as .tunnel-config.json next to the project.
    """
    activeTunnelId: str
    tunnelName: str = ""
    hostnames: List[str] = field(default_factory=list)
    updatedAt: str = ""

def load_pointer(path: str) -> Optional[TunnelPointer]:
    try:
        with open(path, "r") as f:
            raw = json.load(f)
    except (OSError, ValueError):
        return None
    if not isinstance(raw, dict) or not raw.get("activeTunnelId"):
        return None
    hosts = raw.get("hostnames")
    if not isinstance(hosts, list):
        # older pointer files carried a single "domain"
        hosts = [raw["domain"]] if raw.get("domain") else []
    return TunnelPointer(
        activeTunnelId=str(raw["activeTunnelId"]),
        tunnelName=str(raw.get("tunnelName", "")),
        hostnames=[str(h) for h in hosts],
        updatedAt=str(raw.get("updatedAt", "")),
    )

def save_pointer(path: str, pointer: TunnelPointer):
    d = os.path.dirname(path)
    if d:
        os.makedirs(d, exist_ok=True)
    if not pointer.updatedAt:
        pointer.updatedAt = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(asdict(pointer), f, indent=2)
    os.replace(tmp, path)

def clear_pointer(path: str) -> bool:
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
