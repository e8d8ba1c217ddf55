# tunnel_deploy/deployer/actions.py
from __future__ import annotations
import os
from typing import List, Optional, Sequence
from tunnel_deploy.common import log
from tunnel_deploy.common.command import Runner
from tunnel_deploy.common.models import ActionResult, CommandResult, PlannedAction, ReconciliationPlan
from tunnel_deploy.common.state import TunnelPointer, save_pointer
from tunnel_deploy.common.util import ensure_dir
from tunnel_deploy.deployer.probes import probe_credentials, probe_tunnels
from tunnel_deploy.deployer.routing_config import credentials_file_for, rewrite_config_file
from tunnel_deploy.deployer.tunnel_list import DEFAULT_PARSER, TunnelListFormat, is_valid_tunnel_id

ALREADY_EXISTS = "already exists"

LABELS = {
    "relocate_credentials": "Relocate credentials",
    "authenticate": "Authenticate",
    "create_tunnel": "Create tunnel",
    "rewrite_config": "Update tunnel config",
    "route_dns": "Route DNS",
    "build_and_start": "Build and start containers",
}

class DeployError(RuntimeError):
    pass

class FatalActionError(DeployError):
    def __init__(self, kind: str, detail: str):
        super().__init__(f"{LABELS.get(kind, kind)} failed: {detail}")
        self.kind = kind
        self.detail = detail

class AmbiguousStateError(DeployError):
    def __init__(self, issues: Sequence[str]):
        super().__init__("; ".join(issues) or "ambiguous state")
        self.issues = tuple(issues)

def _err_text(res: CommandResult) -> str:
    return (res.stderr.strip() or res.stdout.strip() or "command failed")

def _label(a: PlannedAction) -> str:
    return f"{LABELS[a.kind]} ({a.target})" if a.target else LABELS[a.kind]

class ActionExecutor:
    """
    Applies a plan one action at a time, in plan order.

    Fatal failures raise FatalActionError, a skipped_ambiguous entry raises
    AmbiguousStateError. Warnings and tolerated failures end up in
    self.results and never interrupt the run.
    """

    def __init__(self, cfg: dict, runner: Runner, logger, parser: TunnelListFormat = DEFAULT_PARSER):
        self.cfg = cfg
        self.runner = runner
        self.logger = logger
        self.parser = parser
        self.tunnel_id: Optional[str] = None
        self.logged_in = False
        self.results: List[ActionResult] = []

    async def execute(self, plan: ReconciliationPlan) -> List[ActionResult]:
        self.tunnel_id = plan.tunnel_id
        self.logged_in = False
        self.results = []

        for a in plan.actions:
            if a.status == "already_satisfied":
                if a.kind == "create_tunnel" and a.tunnel_id:
                    self.tunnel_id = a.tunnel_id
                log.ok(f"{_label(a)}: already satisfied ({a.reason})")
                self.results.append(ActionResult(a.kind, "already", a.target, a.reason))
                continue

            if a.status == "skipped_ambiguous":
                log.fail(f"{_label(a)}: cannot proceed, {a.reason}")
                raise AmbiguousStateError(plan.issues or (a.reason,))

            handler = getattr(self, f"_do_{a.kind}")
            out = await handler(a)
            self.results.extend(out if isinstance(out, list) else [out])
        return self.results

    async def _run(self, argv: List[str], description: str, **kw) -> CommandResult:
        kw.setdefault("timeout", self.cfg["command_timeout_sec"])
        kw.setdefault("cwd", self.cfg["project_dir"])
        self.logger.info(f"exec {' '.join(argv)}")
        return await self.runner(argv, description=description, **kw)

    def _tunnel(self, *args: str) -> List[str]:
        return [*self.cfg["tunnel_cli"], "tunnel", *args]

    # credentials ---------------------------------------------------------

    def _relocate_one(self, fname: str) -> ActionResult:
        src = os.path.join(self.cfg["cloudflared_dir"], fname)
        dst = os.path.join(self.cfg["credentials_dir"], fname)
        if os.path.exists(dst):
            log.warn(f"{fname} already in credentials/, left in place", indent=2)
            return ActionResult("relocate_credentials", "already", fname, "destination exists")
        try:
            os.rename(src, dst)
        except OSError as e:
            log.warn(f"could not move {fname}: {e}", indent=2)
            return ActionResult("relocate_credentials", "warning", fname, str(e))
        log.ok(f"Moved {fname} to credentials/", indent=2)
        return ActionResult("relocate_credentials", "ok", fname)

    def _ensure_credentials_dir(self) -> bool:
        try:
            if ensure_dir(self.cfg["credentials_dir"]):
                log.ok("Created credentials directory", indent=2)
            return True
        except OSError as e:
            log.warn(f"cannot create credentials directory: {e}", indent=2)
            return False

    async def _do_relocate_credentials(self, a: PlannedAction) -> ActionResult:
        log.step(f"Relocating {a.target}", icon="🔧")
        if not self._ensure_credentials_dir():
            return ActionResult("relocate_credentials", "warning", a.target, "no credentials directory")
        return self._relocate_one(a.target)

    def relocate_pending(self) -> List[ActionResult]:
        """Move every tunnel credential sitting in the cloudflared root (best effort)."""
        pending = probe_credentials(self.cfg).pending_files
        if not pending:
            return []
        log.step("Checking credentials location...", icon="🔧")
        if not self._ensure_credentials_dir():
            return [ActionResult("relocate_credentials", "warning", f, "no credentials directory") for f in pending]
        return [self._relocate_one(f) for f in pending]

    # tunnel --------------------------------------------------------------

    async def _do_authenticate(self, a: PlannedAction) -> ActionResult:
        log.step("Authenticating with Cloudflare, a browser window will open", icon="🔐")
        # interactive: the user must see the login URL, and there is no deadline
        res = await self._run(self._tunnel("login"), "Cloudflare authentication",
                              passthrough=True, timeout=None)
        if not res.success:
            raise FatalActionError("authenticate", _err_text(res))
        if not os.path.isfile(self.cfg["cert_path"]):
            log.warn(f"login finished but {self.cfg['cert_path']} is still missing")
        self.logged_in = True
        return ActionResult("authenticate", "ok")

    async def _named_ids(self, name: str) -> List[str]:
        listed = await self._run(self._tunnel("list"), "Listing tunnels", suppress_output=True)
        if not listed.success:
            return []
        return [i for i, n in self.parser.parse(listed.stdout) if n == name]

    async def _do_create_tunnel(self, a: PlannedAction) -> List[ActionResult]:
        name = self.cfg["tunnel_name"]

        if self.logged_in:
            # the plan's registry listing ran without a certificate
            ids = await self._named_ids(name)
            if len(ids) > 1:
                raise AmbiguousStateError([f"Multiple tunnels with same name '{name}' ({', '.join(ids)})"])
            if ids:
                self.tunnel_id = ids[0]
                log.ok(f"Tunnel '{name}' already exists with id {ids[0]}", indent=2)
                return [ActionResult("create_tunnel", "already", name, ids[0]), *self.relocate_pending()]

        log.step(f"Creating tunnel '{name}'", icon="🚇")
        res = await self._run(self._tunnel("create", name), "Creating tunnel")
        if not res.success:
            raise FatalActionError("create_tunnel", _err_text(res))

        tid = self.parser.parse_created_id(res.output)
        if tid is None:
            ids = await self._named_ids(name)
            if len(ids) != 1:
                raise FatalActionError("create_tunnel", f"cannot determine id of tunnel '{name}'")
            tid = ids[0]

        self.tunnel_id = tid
        log.ok(f"Tunnel '{name}' created with id {tid}", indent=2)
        # the CLI writes <id>.json next to cert.pem
        return [ActionResult("create_tunnel", "ok", name, tid), *self.relocate_pending()]

    async def _resolve_config_tunnel(self, a: PlannedAction) -> str:
        if a.tunnel_id:
            return a.tunnel_id

        # created during this run: look again now that its credential exists
        creds = probe_credentials(self.cfg)
        tunnels = await probe_tunnels(self.cfg, self.runner, creds, self.parser)
        holders = sorted({t.id for t in tunnels if t.has_credentials})
        if len(holders) == 1:
            return holders[0]
        if not holders:
            if self.tunnel_id and self.tunnel_id in creds.credential_ids:
                # registry listing unavailable, fall back to the id create reported
                return self.tunnel_id
            raise AmbiguousStateError(["No tunnel has credentials"])
        raise AmbiguousStateError(["Multiple tunnels have credentials (" + ", ".join(holders) + ")"])

    async def _do_rewrite_config(self, a: PlannedAction) -> ActionResult:
        log.step("Updating tunnel configuration", icon="⚙️")
        tid = await self._resolve_config_tunnel(a)
        if not is_valid_tunnel_id(tid):
            raise FatalActionError("rewrite_config", f"invalid tunnel id {tid}")

        local = os.path.join(self.cfg["credentials_dir"], f"{tid}.json")
        if not os.path.isfile(local):
            raise FatalActionError("rewrite_config", f"no credentials for tunnel {tid} at {local}")

        creds_file = credentials_file_for(self.cfg["container_credentials_dir"], tid)
        try:
            changed = rewrite_config_file(self.cfg["config_path"], tid, creds_file)
        except (OSError, ValueError) as e:
            raise FatalActionError("rewrite_config", str(e)) from e

        if changed:
            log.ok(f"config.yml now uses tunnel {tid}", indent=2)
        else:
            log.ok(f"config.yml already uses tunnel {tid}", indent=2)

        try:
            save_pointer(self.cfg["pointer_path"], TunnelPointer(
                activeTunnelId=tid, tunnelName=self.cfg["tunnel_name"], hostnames=list(self.cfg["hostnames"]),
            ))
        except OSError as e:
            log.warn(f"could not write {self.cfg['pointer_path']}: {e}", indent=2)

        if self.tunnel_id is None:
            self.tunnel_id = tid
        return ActionResult("rewrite_config", "ok" if changed else "already", None, tid)

    async def _do_route_dns(self, a: PlannedAction) -> ActionResult:
        host = a.target
        tid = a.tunnel_id or self.tunnel_id
        log.step(f"Configuring DNS for {host}", icon="🌐")
        if not tid:
            log.warn("no tunnel id known, skipping", indent=2)
            return ActionResult("route_dns", "warning", host, "no tunnel id")

        res = await self._run(self._tunnel("route", "dns", tid, host), f"tunnel route dns {host}",
                              suppress_output=True)
        if res.success:
            log.ok("Success", indent=2)
            return ActionResult("route_dns", "ok", host, tid)
        # the record is there, whatever it currently points at
        if ALREADY_EXISTS in res.output.lower():
            log.ok("Record already exists", indent=2)
            return ActionResult("route_dns", "already", host, _err_text(res))
        log.warn(f"DNS routing failed, continuing: {_err_text(res)}", indent=2)
        return ActionResult("route_dns", "warning", host, _err_text(res))

    # containers ----------------------------------------------------------

    async def _do_build_and_start(self, a: PlannedAction) -> ActionResult:
        log.step("Building Docker image", icon="🔨")
        res = await self._run(["docker", "build", "-t", self.cfg["image_tag"], "."],
                              "Building application image", timeout=self.cfg["build_timeout_sec"])
        if not res.success:
            raise FatalActionError("build_and_start", _err_text(res))

        log.step("Starting services", icon="🚀")
        res = await self._run([*self.cfg["compose_cmd"], "up", "-d"], "Starting containers",
                              timeout=self.cfg["build_timeout_sec"])
        if not res.success:
            raise FatalActionError("build_and_start", _err_text(res))
        return ActionResult("build_and_start", "ok")
