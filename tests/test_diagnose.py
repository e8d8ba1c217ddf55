import asyncio
from dataclasses import replace

from conftest import HOSTS, TUNNEL_A, TUNNEL_B, TUNNEL_NAME, RoutingTransport, failed, snapshot, write_config

from tunnel_deploy.common.models import CredentialState
from tunnel_deploy.deployer.diagnose import FixCommands, diagnose, run_diagnose


def test_clean_slate_reports_five_issues():
    res = diagnose(snapshot(), TUNNEL_NAME, HOSTS)

    assert res.issues == (
        "No tunnels found",
        "No tunnel has credentials",
        f"DNS record for {HOSTS[0]} not found",
        f"DNS record for {HOSTS[1]} not found",
        "Containers not running",
    )
    assert len(res.recommendations) == 5
    assert res.exit_code == 1


def test_healthy_deployment_has_no_issues():
    snap = snapshot(cert=True, creds=[TUNNEL_A], tunnels=[(TUNNEL_A, TUNNEL_NAME)],
                    config_id=TUNNEL_A, dns=HOSTS, running=True)

    res = diagnose(snap, TUNNEL_NAME, HOSTS, networks={"app": ("tunnel-network",), "daemon": ("tunnel-network",)})

    assert res.issues == ()
    assert res.quick_fixes == ()
    assert res.exit_code == 0
    assert res.active_tunnel_id == TUNNEL_A


def test_config_drift_names_both_ids():
    snap = snapshot(cert=True, creds=[TUNNEL_A], tunnels=[(TUNNEL_A, TUNNEL_NAME)],
                    config_id=TUNNEL_B, dns=HOSTS, running=True)

    res = diagnose(snap, TUNNEL_NAME, HOSTS)

    assert res.issues == (f"Config tunnel ID ({TUNNEL_B}) doesn't match tunnel with credentials ({TUNNEL_A})",)
    assert res.recommendations == (f"Update config.yml to use tunnel ID: {TUNNEL_A}",)
    assert res.quick_fixes == (f"Update config: tunnel-deploy update-config {TUNNEL_A}",)


def test_quick_fixes_use_configured_commands():
    snap = snapshot(cert=True, creds=[TUNNEL_A], tunnels=[(TUNNEL_A, TUNNEL_NAME)],
                    config_id=TUNNEL_A, dns=HOSTS[:1])
    cmds = FixCommands(route_dns="cloudflared tunnel route dns {tunnel} {hostname}", start="docker compose up -d")

    res = diagnose(snap, TUNNEL_NAME, HOSTS, commands=cmds)

    assert res.quick_fixes == (
        f"Setup DNS: cloudflared tunnel route dns {TUNNEL_A} {HOSTS[1]}",
        "Start services: docker compose up -d",
    )


def test_same_name_tunnels():
    snap = snapshot(cert=True, creds=[TUNNEL_A], tunnels=[(TUNNEL_A, TUNNEL_NAME), (TUNNEL_B, TUNNEL_NAME)],
                    config_id=TUNNEL_A, dns=HOSTS, running=True)

    res = diagnose(snap, TUNNEL_NAME, HOSTS)

    assert res.issues == (f"Multiple tunnels with same name '{TUNNEL_NAME}'",)
    assert TUNNEL_A in res.recommendations[0] and TUNNEL_B in res.recommendations[0]


def test_multiple_credentials_mentions_pointer():
    snap = snapshot(cert=True, creds=[TUNNEL_A, TUNNEL_B],
                    tunnels=[(TUNNEL_A, TUNNEL_NAME), (TUNNEL_B, "old-tunnel")],
                    config_id=TUNNEL_A, dns=HOSTS, running=True, pointer=TUNNEL_A)

    res = diagnose(snap, TUNNEL_NAME, HOSTS)

    assert res.issues == ("Multiple tunnels have credentials",)
    assert TUNNEL_A in res.recommendations[0]
    assert res.active_tunnel_id == TUNNEL_A


def test_misnamed_credential_files():
    snap = snapshot(cert=True, creds=[TUNNEL_A], tunnels=[(TUNNEL_A, TUNNEL_NAME)],
                    config_id=TUNNEL_A, dns=HOSTS, running=True)
    snap = replace(snap, credentials=CredentialState(
        cert_present=True, credential_ids=(TUNNEL_A,), invalid_files=("backup.json",),
        pending_invalid_files=("notes.json",)))

    res = diagnose(snap, TUNNEL_NAME, HOSTS)

    assert len(res.issues) == 2
    assert "backup.json" in res.issues[0]
    assert "notes.json" in res.issues[1]


def test_containers_on_separate_networks():
    snap = snapshot(cert=True, creds=[TUNNEL_A], tunnels=[(TUNNEL_A, TUNNEL_NAME)],
                    config_id=TUNNEL_A, dns=HOSTS, running=True)

    res = diagnose(snap, TUNNEL_NAME, HOSTS, networks={"app": ("bridge",), "daemon": ("tunnel-network",)})

    assert res.issues == ("Containers do not share a network",)


def test_run_diagnose_is_read_only(cfg, deployed):
    write_config(cfg, TUNNEL_B)

    res = asyncio.run(run_diagnose(cfg, deployed, RoutingTransport(deployed)))

    assert len(res.issues) == 1
    assert "doesn't match" in res.issues[0]
    assert not deployed.called("route")
    assert not deployed.called("up", "-d")
    assert deployed.called("inspect")


def test_failed_inspect_is_not_a_network_problem(cfg, deployed):
    deployed.fail["inspect"] = failed("Cannot connect to the Docker daemon at unix:///var/run/docker.sock")

    res = asyncio.run(run_diagnose(cfg, deployed, RoutingTransport(deployed)))

    assert res.issues == ()
    assert res.exit_code == 0


def test_only_inspected_containers_are_compared():
    snap = snapshot(cert=True, creds=[TUNNEL_A], tunnels=[(TUNNEL_A, TUNNEL_NAME)],
                    config_id=TUNNEL_A, dns=HOSTS, running=True)

    res = diagnose(snap, TUNNEL_NAME, HOSTS, networks={"app": ("bridge",), "daemon": None})

    assert res.issues == ()
