# tunnel_deploy/deployer/update_config.py
from __future__ import annotations
import os
from typing import Optional
from tunnel_deploy.common import log
from tunnel_deploy.common.state import TunnelPointer, save_pointer
from tunnel_deploy.deployer.probes import probe_credentials
from tunnel_deploy.deployer.routing_config import credentials_file_for, rewrite_config_file
from tunnel_deploy.deployer.tunnel_list import is_valid_tunnel_id

def run_update_config(cfg: dict, tunnel_id: Optional[str] = None) -> int:
    """Standalone config repair. Detects the tunnel from credentials when not given."""
    log.console.print("[bold cyan]🔧 Cloudflare Tunnel Config Updater[/bold cyan]\n")

    if not tunnel_id:
        log.step("No tunnel ID provided, detecting from credentials...", icon="🔍")
        ids = probe_credentials(cfg).credential_ids
        if not ids:
            log.fail("No tunnel credentials found")
            log.console.print("[yellow]💡[/yellow] Run: tunnel-deploy deploy")
            return 1
        if len(ids) > 1:
            log.warn("Multiple tunnel credentials found:")
            for i in ids:
                log.console.print(f"  • {i}")
            log.console.print("\n[yellow]💡[/yellow] Please specify which tunnel to use:")
            log.console.print("  tunnel-deploy update-config <tunnel-id>")
            return 1
        tunnel_id = ids[0]
        log.ok(f"Found tunnel ID: {tunnel_id}")

    if not is_valid_tunnel_id(tunnel_id):
        log.fail(f"Invalid tunnel ID format: {tunnel_id}")
        return 1

    if not os.path.isfile(os.path.join(cfg["credentials_dir"], f"{tunnel_id}.json")):
        log.fail(f"No credentials found for tunnel {tunnel_id}")
        log.console.print(f"[yellow]💡[/yellow] Make sure credentials exist in {cfg['credentials_dir']}")
        return 1
    log.ok(f"Credentials found for tunnel {tunnel_id}")

    try:
        changed = rewrite_config_file(cfg["config_path"], tunnel_id,
                                      credentials_file_for(cfg["container_credentials_dir"], tunnel_id))
        save_pointer(cfg["pointer_path"], TunnelPointer(
            activeTunnelId=tunnel_id, tunnelName=cfg["tunnel_name"], hostnames=list(cfg["hostnames"]),
        ))
    except (OSError, ValueError) as e:
        log.fail(f"Failed to update config: {e}")
        return 1

    if changed:
        log.ok("Updated config.yml successfully")
    else:
        log.ok(f"Config already uses tunnel ID: {tunnel_id}")
    log.ok(f"Updated {os.path.basename(cfg['pointer_path'])}")
    log.console.print("\n[cyan]📋 Next steps:[/cyan]")
    log.console.print("  1. Restart services: docker compose restart")
    log.console.print("  2. Verify deployment: tunnel-deploy verify")
    return 0
