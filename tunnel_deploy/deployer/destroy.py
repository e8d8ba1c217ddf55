# tunnel_deploy/deployer/destroy.py
from __future__ import annotations
import os
from tunnel_deploy.common import log
from tunnel_deploy.common.command import Runner
from tunnel_deploy.common.state import clear_pointer
from tunnel_deploy.common.util import files_with_extension
from tunnel_deploy.deployer.probes import read_pointer
from tunnel_deploy.deployer.tunnel_list import DEFAULT_PARSER

async def _tunnel_id_for_cleanup(cfg: dict, runner: Runner):
    tid = read_pointer(cfg)
    if tid:
        return tid
    res = await runner([*cfg["tunnel_cli"], "tunnel", "list"], suppress_output=True,
                       timeout=cfg["command_timeout_sec"], cwd=cfg["project_dir"])
    ids = [i for i, n in DEFAULT_PARSER.parse(res.stdout) if n == cfg["tunnel_name"]] if res.success else []
    return ids[0] if len(ids) == 1 else None

def remove_credentials(cfg: dict) -> bool:
    log.step("Removing tunnel credentials...", icon="🔐")
    ok = True
    for name in files_with_extension(cfg["credentials_dir"], ".json"):
        try:
            os.remove(os.path.join(cfg["credentials_dir"], name))
            log.ok(f"Removed {name}", indent=2)
        except OSError as e:
            log.fail(f"Failed to remove {name}: {e}", indent=2)
            ok = False
    try:
        os.remove(cfg["cert_path"])
        log.ok("Removed cert.pem", indent=2)
    except FileNotFoundError:
        log.warn("cert.pem not found", indent=2)
    except OSError as e:
        log.fail(f"Failed to remove cert.pem: {e}", indent=2)
        ok = False
    if clear_pointer(cfg["pointer_path"]):
        log.ok("Removed tunnel pointer file", indent=2)
    return ok

async def run_destroy(cfg: dict, runner: Runner, logger, full: bool = False, keep_images: bool = False) -> int:
    """
    Stop the stack. With full=True also delete the tunnel and local secrets;
    secrets are only removed after the registry accepted the delete.
    """
    log.console.print("[bold cyan]🧹 Smart Cloudflare Tunnel Cleanup[/bold cyan]\n")
    cwd = cfg["project_dir"]
    t = cfg["command_timeout_sec"]
    compose = cfg["compose_cmd"]

    log.step("Stopping containers...", icon="🛑")
    res = await runner([*compose, "down"], description="Stopping and removing containers", timeout=t, cwd=cwd)
    if not res.success:
        log.warn("Failed to stop containers, but continuing...")

    log.step("Cleaning up Docker resources...", icon="🧹")
    await runner([*compose, "down", "-v"], description="Removing volumes", allow_failure=True, timeout=t, cwd=cwd)

    if keep_images:
        log.warn("Keeping Docker images as requested")
    else:
        log.step("Removing Docker images...", icon="🗑️")
        for image in [cfg["image_tag"], *cfg["extra_images"]]:
            await runner(["docker", "rmi", image], description=f"Removing {image}", allow_failure=True, timeout=t)

    code = 0
    if full:
        log.console.print("\n[yellow]🚨 Full cleanup requested - removing tunnel and credentials[/yellow]")
        tid = await _tunnel_id_for_cleanup(cfg, runner)
        if tid:
            await runner([*cfg["tunnel_cli"], "tunnel", "cleanup", tid],
                         description="Cleaning up tunnel connections", allow_failure=True, timeout=t, cwd=cwd)
        res = await runner([*cfg["tunnel_cli"], "tunnel", "delete", cfg["tunnel_name"]],
                           description="Deleting tunnel", timeout=t, cwd=cwd)
        if res.success:
            remove_credentials(cfg)
            log.console.print("\n[green]✅ Complete cleanup successful![/green]")
            log.info("DNS records for " + ", ".join(cfg["hostnames"]) + " must be removed in the DNS dashboard.")
        else:
            log.console.print("\n[red]❌ Failed to remove tunnel[/red]")
            code = 1
    else:
        log.console.print("\n[green]✅ Cleanup successful![/green]")
        log.console.print("Tunnel configuration preserved. Remove it with: tunnel-deploy destroy --full")

    logger.info(f"destroy full={full} keep_images={keep_images} exit={code}")
    return code
