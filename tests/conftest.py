import json
import os

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse

from tunnel_deploy.common.models import (
    CommandResult, ConfigState, ContainerState, CredentialState, ProbeSnapshot, TunnelInfo,
)
from tunnel_deploy.deployer.settings import build_cfg

TUNNEL_NAME = "cloudflare-tunnel-example"
MAIN_HOST = "hello.example.test"
HEALTH_HOST = "health.example.test"
HOSTS = [MAIN_HOST, HEALTH_HOST]

TUNNEL_A = "1e83bc01-0938-41cb-b347-2d331d3bc120"
TUNNEL_B = "90b6148f-e83f-4749-8649-a1cad20715aa"
TUNNEL_NEW = "3c5d7e91-2b4a-4f6e-9d8c-7a1b2c3d4e5f"

APP_CONTAINER = "cloudflare-tunnel-app"
DAEMON_CONTAINER = "cloudflare-tunnel"

CONFIG_TEMPLATE = """\
# routing for the example service
tunnel: {tunnel}
credentials-file: /etc/cloudflared/credentials/{tunnel}.json

ingress:
  - hostname: hello.example.test
    service: http://app:8080
  - hostname: health.example.test
    service: http://app:8080
  - service: http_status:404
"""


def ok(stdout: str = "", stderr: str = "") -> CommandResult:
    return CommandResult(True, stdout, stderr, 0)


def failed(stderr: str, code: int = 1) -> CommandResult:
    return CommandResult(False, "", stderr, code)


@pytest.fixture
def cfg(tmp_path):
    (tmp_path / "cloudflared").mkdir()
    return build_cfg(
        {
            "project_dir": ".",
            "tunnel_name": TUNNEL_NAME,
            "hostnames": HOSTS,
            "tunnel_cli": ["cloudflared"],
            "compose_cmd": ["docker", "compose"],
            "settle_timeout_sec": 0,
            "poll_initial_delay_sec": 0,
            "poll_max_delay_sec": 0,
            "endpoints": [
                {"name": "Main Application", "url": f"https://{MAIN_HOST}/",
                 "expected_status": 200, "expected_content": "Hello World", "timeout_sec": 2},
                {"name": "Health Check", "url": f"https://{HEALTH_HOST}/health",
                 "expected_status": 200, "expected_content": '"status":"healthy"', "timeout_sec": 2},
            ],
        },
        str(tmp_path),
    )


def write_cert(cfg):
    with open(cfg["cert_path"], "w") as f:
        f.write("-----BEGIN ARGO TUNNEL TOKEN-----\n")


def write_credentials(cfg, tunnel_id, root=False):
    d = cfg["cloudflared_dir"] if root else cfg["credentials_dir"]
    os.makedirs(d, exist_ok=True)
    path = os.path.join(d, f"{tunnel_id}.json")
    with open(path, "w") as f:
        json.dump({"AccountTag": "acct", "TunnelID": tunnel_id, "TunnelSecret": "c2VjcmV0"}, f)
    return path


def write_config(cfg, tunnel_id):
    with open(cfg["config_path"], "w") as f:
        f.write(CONFIG_TEMPLATE.format(tunnel=tunnel_id))


def snapshot(cert=False, creds=(), pending=(), tunnels=(), config_id=None, dns=(), running=False, pointer=None):
    """ProbeSnapshot built by hand, tunnels given as (id, name) pairs."""
    have = set(creds)
    return ProbeSnapshot(
        credentials=CredentialState(
            cert_present=cert,
            credential_ids=tuple(creds),
            pending_files=tuple(f"{t}.json" for t in pending),
        ),
        tunnels=tuple(TunnelInfo(tid, name, tid in have) for tid, name in tunnels),
        config=ConfigState(exists=config_id is not None, tunnel_id=config_id),
        dns={h: h in dns for h in HOSTS},
        containers=ContainerState(running=running),
        pointer_tunnel_id=pointer,
    )


class FakeWorld:
    """
    Stand-in for the tunnel CLI, the docker CLI and public DNS.
    Callable with run_command's signature.
    """

    def __init__(self, cfg):
        self.cfg = cfg
        self.tunnels = []
        self.dns = set()
        self.running = False
        self.networks = {APP_CONTAINER: ["tunnel-network"], DAEMON_CONTAINER: ["tunnel-network"]}
        self.fail = {}
        self.new_ids = [TUNNEL_NEW]
        self.list_needs_cert = False
        self.calls = []

    def called(self, *words):
        return [c for c in self.calls if _contains(c, words)]

    async def __call__(self, argv, **kw):
        argv = list(argv)
        self.calls.append(argv)
        if argv[0] == "cloudflared":
            return self._tunnel(argv[2:])
        if argv[:2] == ["docker", "compose"]:
            return self._compose(argv[2:])
        return self._docker(argv[1:])

    def _tunnel(self, args):
        cmd = args[0]
        if cmd in self.fail:
            return self.fail[cmd]
        if cmd == "login":
            write_cert(self.cfg)
            return ok()
        if cmd == "list":
            if self.list_needs_cert and not os.path.isfile(self.cfg["cert_path"]):
                return failed("Cannot determine default origin certificate path. No file cert.pem in "
                              "[~/.cloudflared ~/.cloudflare-warp ~/cloudflare-warp /etc/cloudflared /usr/local/etc/cloudflared]")
            lines = [
                "You can obtain more detailed information for each tunnel with `cloudflared tunnel info <name/uuid>`",
                "ID                                   NAME                      CREATED              CONNECTIONS",
            ]
            lines += [f"{tid} {name} 2024-05-01T10:00:00Z 2xams01, 2xlhr01" for tid, name in self.tunnels]
            return ok("\n".join(lines) + "\n")
        if cmd == "create":
            if any(name == args[1] for _, name in self.tunnels):
                return failed("failed to create tunnel: Create Tunnel API call failed: tunnel with name already exists")
            tid = self.new_ids.pop(0)
            self.tunnels.append((tid, args[1]))
            write_credentials(self.cfg, tid, root=True)
            return ok(stderr=f"Tunnel credentials written to /home/nonroot/.cloudflared/{tid}.json.\n"
                             f"Created tunnel {args[1]} with id {tid}\n")
        if cmd == "route":
            host = args[3]
            if host in self.dns:
                return failed(f"Failed to add route: code: 1003, reason: Failed to create record {host} "
                              "with err An A, AAAA, or CNAME record with that host already exists.")
            self.dns.add(host)
            return ok(stderr=f"Added CNAME {host} which will route to this tunnel")
        if cmd == "cleanup":
            return ok()
        if cmd == "delete":
            self.tunnels = [t for t in self.tunnels if t[1] != args[1]]
            return ok()
        return failed(f"unknown tunnel command {args}")

    def _compose(self, args):
        key = "up" if args[0] == "up" else "down"
        if key in self.fail:
            return self.fail[key]
        self.running = key == "up"
        return ok()

    def _docker(self, args):
        cmd = args[0]
        if cmd in self.fail:
            return self.fail[cmd]
        if cmd == "ps":
            names = ["postgres-dev"]
            if self.running:
                names += [APP_CONTAINER, DAEMON_CONTAINER]
            return ok("\n".join(names) + "\n")
        if cmd == "inspect":
            nets = {n: {"IPAddress": "172.20.0.2"} for n in self.networks.get(args[1], [])}
            return ok(json.dumps(nets) + "\n")
        if cmd in ("build", "rmi"):
            return ok()
        return failed(f"unknown docker command {args}")


def _contains(argv, words):
    n = len(words)
    return any(tuple(argv[i:i + n]) == tuple(words) for i in range(len(argv) - n + 1))


def make_backend(health_status: int = 200) -> FastAPI:
    app = FastAPI()

    @app.middleware("http")
    async def edge_header(request: Request, call_next):
        response = await call_next(request)
        response.headers["server"] = "cloudflare"
        return response

    @app.get("/")
    async def index():
        return HTMLResponse("<html><body><h1>Hello World</h1></body></html>")

    @app.get("/health")
    async def health():
        if health_status != 200:
            return JSONResponse({"status": "unhealthy"}, status_code=health_status)
        return JSONResponse({"status": "healthy"})

    return app


class RoutingTransport(httpx.AsyncBaseTransport):
    """Answers DNS-over-HTTPS queries from world.dns, everything else goes to the backend app."""

    def __init__(self, world, app=None):
        self.world = world
        self.backend = httpx.ASGITransport(app=app or make_backend())

    async def handle_async_request(self, request):
        if request.url.host == "dns.google":
            name = request.url.params.get("name")
            if name in self.world.dns:
                body = {"Status": 0, "Answer": [{"name": name + ".", "type": 1, "TTL": 300, "data": "104.21.32.1"}]}
            else:
                body = {"Status": 3}
            return httpx.Response(200, json=body)
        return await self.backend.handle_async_request(request)


@pytest.fixture
def world(cfg):
    return FakeWorld(cfg)


@pytest.fixture
def deployed(cfg, world):
    """Everything in place: cert, one credentialed tunnel, matching config, DNS, containers."""
    write_cert(cfg)
    write_credentials(cfg, TUNNEL_A)
    write_config(cfg, TUNNEL_A)
    world.tunnels = [(TUNNEL_A, TUNNEL_NAME)]
    world.dns = set(HOSTS)
    world.running = True
    return world
