# tunnel_deploy/deployer/cli.py
from __future__ import annotations
import argparse, asyncio, os, sys
from rich.markup import escape
from tunnel_deploy.common import log
from tunnel_deploy.common.command import run_command
from tunnel_deploy.common.log import console, setup_logger, LOGGER_NAME
from tunnel_deploy.common.util import tail_file
from tunnel_deploy.deployer.deploy import make_plan, print_plan, run_deploy
from tunnel_deploy.deployer.destroy import run_destroy
from tunnel_deploy.deployer.diagnose import print_diagnostics, run_diagnose
from tunnel_deploy.deployer.routing_config import validate_config
from tunnel_deploy.deployer.settings import DEFAULT_CONFIG_PATH, SettingsError, load_cfg
from tunnel_deploy.deployer.update_config import run_update_config
from tunnel_deploy.deployer.verify import check_connectivity, checks_from_cfg, print_verification, verify_endpoints

async def cmd_verify(cfg: dict) -> int:
    console.print("[yellow]🔧 Checking prerequisites...[/yellow]")
    if not await check_connectivity(cfg["connectivity_url"]):
        log.fail("Internet connectivity: no access")
        console.print("[red]Cannot proceed without internet connectivity.[/red]")
        return 1
    log.ok("Internet connectivity: OK")

    console.print("\n[bold cyan]🔍 Verifying Cloudflare Tunnel Deployment[/bold cyan]\n")
    rep = await verify_endpoints(checks_from_cfg(cfg), edge_marker=cfg["edge_server_marker"])
    print_verification(rep, cfg["edge_server_marker"])
    if rep.ok:
        console.print("\n[green]🎉 All endpoints are working correctly![/green]")
        return 0
    console.print("\n[red]❌ Some endpoints failed verification.[/red]")
    console.print("Check the tunnel configuration and container status:")
    console.print("  • docker compose ps")
    console.print("  • docker compose logs")
    console.print("  • tunnel-deploy diagnose")
    return 1

async def cmd_diagnose(cfg: dict) -> int:
    console.print("[bold cyan]🔍 Cloudflare Tunnel Diagnostics[/bold cyan]\n")
    result = await run_diagnose(cfg, run_command)
    print_diagnostics(result)
    return result.exit_code

async def cmd_plan(cfg: dict) -> int:
    p = await make_plan(cfg, run_command)
    print_plan(p)
    return 1 if p.issues else 0

def cmd_check_config(cfg: dict) -> int:
    problems = validate_config(cfg["config_path"], cfg["hostnames"], cfg["container_credentials_dir"])
    if not problems:
        log.ok(f"{cfg['config_path']} is valid")
        return 0
    for p in problems:
        log.fail(p)
    return 1

def main():
    ap = argparse.ArgumentParser(prog="tunnel-deploy")
    ap.add_argument("--config", default=os.environ.get("TUNNEL_DEPLOY_CONFIG", DEFAULT_CONFIG_PATH),
                    help="path to deploy.yaml")
    ap.add_argument("-v", "--verbose", action="store_true", help="echo the run log to stderr")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("deploy", help="reconcile and verify")
    sub.add_parser("plan", help="show what deploy would do")
    sub.add_parser("diagnose", help="report issues without changing anything")
    sub.add_parser("verify", help="probe the public endpoints")
    sub.add_parser("check-config", help="validate the tunnel config.yml")

    uc = sub.add_parser("update-config", help="point config.yml at a tunnel")
    uc.add_argument("tunnel_id", nargs="?")

    ds = sub.add_parser("destroy", help="stop and clean up")
    ds.add_argument("--full", "-f", action="store_true", help="also delete tunnel and credentials")
    ds.add_argument("--keep-images", "-i", action="store_true")

    tl = sub.add_parser("tail-log")
    tl.add_argument("-n", type=int, default=200)

    args = ap.parse_args()
    try:
        cfg = load_cfg(args.config)
    except SettingsError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)

    logger = setup_logger(LOGGER_NAME, cfg["log_dir"], stream=args.verbose)

    if args.cmd == "tail-log":
        console.print(tail_file(os.path.join(cfg["log_dir"], f"{LOGGER_NAME}.log"), args.n), markup=False)
        return

    logger.info(f"command {args.cmd} config={args.config}")
    try:
        if args.cmd == "deploy":
            code = asyncio.run(run_deploy(cfg, run_command, logger)).exit_code
        elif args.cmd == "plan":
            code = asyncio.run(cmd_plan(cfg))
        elif args.cmd == "diagnose":
            code = asyncio.run(cmd_diagnose(cfg))
        elif args.cmd == "verify":
            code = asyncio.run(cmd_verify(cfg))
        elif args.cmd == "check-config":
            code = cmd_check_config(cfg)
        elif args.cmd == "update-config":
            code = run_update_config(cfg, args.tunnel_id)
        else:
            code = asyncio.run(run_destroy(cfg, run_command, logger, args.full, args.keep_images))
    except KeyboardInterrupt:
        console.print("\n[yellow]interrupted[/yellow]")
        code = 130

    logger.info(f"command {args.cmd} exit={code}")
    sys.exit(code)

if __name__ == "__main__":
    main()
