# tunnel_deploy/deployer/routing_config.py
from __future__ import annotations
import os, re
from typing import List
import yaml
from tunnel_deploy.common.models import ConfigState
from tunnel_deploy.deployer.tunnel_list import is_valid_tunnel_id

# Edits are pattern substitutions so comments, ordering and ingress rules survive.
# groups: key, opening quote, value, closing quote plus any trailing comment
TUNNEL_LINE = re.compile(r"^(tunnel:[ \t]*)([\"']?)([A-Za-z0-9-]+)(\2[ \t]*(?:#[^\n]*)?)$", re.M)
CREDS_LINE = re.compile(r"^(credentials-file:[ \t]*)([\"']?)([^\"'#\n]*?[^\s\"'#])(\2[ \t]*(?:#[^\n]*)?)$", re.M)

def credentials_file_for(container_credentials_dir: str, tunnel_id: str) -> str:
    return f"{container_credentials_dir.rstrip('/')}/{tunnel_id}.json"

def parse_config_text(text: str) -> ConfigState:
    mt = TUNNEL_LINE.search(text)
    mc = CREDS_LINE.search(text)
    return ConfigState(
        exists=True,
        tunnel_id=mt.group(3) if mt else None,
        credentials_file=mc.group(3) if mc else None,
    )

def read_config_state(path: str) -> ConfigState:
    try:
        with open(path, "r") as f:
            text = f.read()
    except OSError:
        return ConfigState(exists=False)
    return parse_config_text(text)

def rewrite_config_text(text: str, tunnel_id: str, credentials_file: str) -> str:
    if not TUNNEL_LINE.search(text):
        raise ValueError("no 'tunnel:' entry in config")

    text = TUNNEL_LINE.sub(lambda m: f"{m.group(1)}{m.group(2)}{tunnel_id}{m.group(4)}", text, count=1)
    if CREDS_LINE.search(text):
        return CREDS_LINE.sub(lambda m: f"{m.group(1)}{m.group(2)}{credentials_file}{m.group(4)}", text, count=1)
    return TUNNEL_LINE.sub(
        lambda m: f"{m.group(0)}\ncredentials-file: {credentials_file}", text, count=1
    )

def rewrite_config_file(path: str, tunnel_id: str, credentials_file: str) -> bool:
    """
    Point the config at tunnel_id. Returns False when it already did.
    Raises OSError / ValueError; callers treat both as fatal.
    """
    with open(path, "r") as f:
        text = f.read()

    new = rewrite_config_text(text, tunnel_id, credentials_file)
    if new == text:
        return False

    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        f.write(new)
    os.replace(tmp, path)
    return True

def validate_config(path: str, hostnames: List[str], container_credentials_dir: str) -> List[str]:
    """
    Structural checks on the tunnel daemon's config. Returns problems found.
    """
    try:
        with open(path, "r") as f:
            doc = yaml.safe_load(f)
    except OSError as e:
        return [f"cannot read {path}: {e}"]
    except yaml.YAMLError as e:
        return [f"invalid YAML: {e}"]

    if not isinstance(doc, dict):
        return ["config must be a mapping"]

    problems = []
    tid = str(doc.get("tunnel") or "")
    if not tid:
        problems.append("tunnel id must be specified")
    elif not is_valid_tunnel_id(tid):
        problems.append(f"tunnel id has invalid format: {tid}")

    creds = doc.get("credentials-file")
    if not creds:
        problems.append("credentials-file must be specified")
    elif tid and creds != credentials_file_for(container_credentials_dir, tid):
        problems.append(f"credentials-file {creds} does not belong to tunnel {tid}")

    ingress = doc.get("ingress")
    if not isinstance(ingress, list) or not ingress:
        problems.append("ingress rules must be a non-empty list")
        return problems

    rules = [r for r in ingress if isinstance(r, dict)]
    if len(rules) != len(ingress):
        problems.append("every ingress rule must be a mapping")

    for host in hostnames:
        rule = next((r for r in rules if r.get("hostname") == host), None)
        if rule is None:
            problems.append(f"no ingress rule for {host}")
        elif not rule.get("service"):
            problems.append(f"ingress rule for {host} has no service")

    last = ingress[-1]
    if not isinstance(last, dict) or "hostname" in last or not last.get("service"):
        problems.append("last ingress rule must be a catch-all service without hostname")
    return problems
