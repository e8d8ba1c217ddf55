# tunnel_deploy/deployer/settings.py
from __future__ import annotations
import copy, os
import yaml

DEFAULT_CONFIG_PATH = "config/deploy.yaml"

DEFAULTS = {
    "project_dir": "..",
    "tunnel_name": "cloudflare-tunnel-example",
    "hostnames": ["hello.example.com", "health.example.com"],

    # local files
    "cloudflared_dir": "cloudflared",
    "cert_path": "cloudflared/cert.pem",
    "credentials_dir": "cloudflared/credentials",
    "config_path": "cloudflared/config.yml",
    "pointer_path": ".tunnel-config.json",
    # where docker-compose mounts the credentials dir inside the daemon container
    "container_credentials_dir": "/etc/cloudflared/credentials",

    # external tools
    "tunnel_cli": [
        "docker", "run", "--rm",
        "-v", "./cloudflared:/home/nonroot/.cloudflared",
        "cloudflare/cloudflared:latest",
    ],
    "compose_cmd": ["docker", "compose"],
    "image_tag": "cloudflare-tunnel-example:latest",
    "extra_images": [],
    "containers": ["cloudflare-tunnel-app", "cloudflare-tunnel"],

    # timeouts (seconds)
    "command_timeout_sec": 60,
    "build_timeout_sec": 600,
    "dns_timeout_sec": 5,

    "dns_resolver_url": "https://dns.google/resolve",
    "connectivity_url": "https://cloudflare.com/cdn-cgi/trace",
    "edge_server_marker": "cloudflare",

    # post-deploy settling
    "settle_timeout_sec": 120,
    "poll_initial_delay_sec": 2,
    "poll_max_delay_sec": 15,

    "endpoints": [],
    "log_dir": "logs",
}

PATH_KEYS = ("cloudflared_dir", "cert_path", "credentials_dir", "config_path", "pointer_path", "log_dir")

class SettingsError(RuntimeError):
    pass

def default_endpoints(hostnames: list[str]) -> list[dict]:
    main, health = hostnames[0], hostnames[-1]
    return [
        {"name": "Main Application", "url": f"https://{main}/",
         "expected_status": 200, "expected_content": "Hello World", "timeout_sec": 10},
        {"name": "Health Check", "url": f"https://{health}/health",
         "expected_status": 200, "expected_content": '"status":"healthy"', "timeout_sec": 10},
    ]

def load_cfg(path: str = DEFAULT_CONFIG_PATH) -> dict:
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise SettingsError(f"cannot read settings {path}: {e}") from e
    except yaml.YAMLError as e:
        raise SettingsError(f"invalid YAML in {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise SettingsError(f"{path}: top level must be a mapping")

    base = os.path.dirname(os.path.abspath(path))
    return build_cfg(raw, base)

def build_cfg(raw: dict, base_dir: str = ".") -> dict:
    """
    Merge raw over DEFAULTS and make every path absolute.

    project_dir is taken relative to base_dir (the settings file's folder);
    the other paths are taken relative to project_dir.
    """
    cfg = copy.deepcopy(DEFAULTS)
    cfg.update(raw)

    hosts = cfg.get("hostnames")
    if not isinstance(hosts, list) or not hosts:
        raise SettingsError("hostnames must be a non-empty list")
    cfg["hostnames"] = [str(h) for h in hosts]

    if not cfg.get("endpoints"):
        cfg["endpoints"] = default_endpoints(cfg["hostnames"])

    cfg["project_dir"] = os.path.normpath(os.path.join(base_dir, str(cfg["project_dir"])))
    for k in PATH_KEYS:
        cfg[k] = os.path.normpath(os.path.join(cfg["project_dir"], str(cfg[k])))

    for k in ("tunnel_cli", "compose_cmd"):
        if isinstance(cfg[k], str):
            cfg[k] = cfg[k].split()
    return cfg
