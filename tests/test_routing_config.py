import pytest
from conftest import CONFIG_TEMPLATE, HOSTS, TUNNEL_A, TUNNEL_B, write_config

from tunnel_deploy.deployer.routing_config import (
    credentials_file_for,
    parse_config_text,
    read_config_state,
    rewrite_config_file,
    rewrite_config_text,
    validate_config,
)

CREDS_DIR = "/etc/cloudflared/credentials"


def test_reads_tunnel_and_credentials_path(cfg):
    write_config(cfg, TUNNEL_B)

    st = read_config_state(cfg["config_path"])

    assert st.exists
    assert st.tunnel_id == TUNNEL_B
    assert st.credentials_file == f"{CREDS_DIR}/{TUNNEL_B}.json"


def test_missing_config_file(cfg):
    st = read_config_state(cfg["config_path"])

    assert not st.exists
    assert st.tunnel_id is None


def test_rewrite_only_touches_the_two_scalars():
    before = CONFIG_TEMPLATE.format(tunnel=TUNNEL_B)

    after = rewrite_config_text(before, TUNNEL_A, credentials_file_for(CREDS_DIR, TUNNEL_A))

    assert after == CONFIG_TEMPLATE.format(tunnel=TUNNEL_A)


def test_rewrite_adds_missing_credentials_line():
    before = f"tunnel: {TUNNEL_B}\ningress:\n  - service: http_status:404\n"

    after = rewrite_config_text(before, TUNNEL_A, f"{CREDS_DIR}/{TUNNEL_A}.json")

    assert after.splitlines()[:2] == [f"tunnel: {TUNNEL_A}", f"credentials-file: {CREDS_DIR}/{TUNNEL_A}.json"]
    assert "http_status:404" in after


def test_rewrite_without_tunnel_line_is_an_error():
    with pytest.raises(ValueError):
        rewrite_config_text("ingress: []\n", TUNNEL_A, "x")


def test_nested_tunnel_keys_are_not_mistaken_for_the_top_level_one():
    text = f"originRequest:\n  tunnel: nope\ntunnel: {TUNNEL_B}\n"

    assert parse_config_text(text).tunnel_id == TUNNEL_B


def test_rewrite_file_reports_no_change(cfg):
    write_config(cfg, TUNNEL_A)

    changed = rewrite_config_file(cfg["config_path"], TUNNEL_A, credentials_file_for(CREDS_DIR, TUNNEL_A))

    assert changed is False


def test_validate_accepts_the_template(cfg):
    write_config(cfg, TUNNEL_A)

    assert validate_config(cfg["config_path"], HOSTS, CREDS_DIR) == []


def test_validate_reports_structural_problems(cfg):
    with open(cfg["config_path"], "w") as f:
        f.write(
            "tunnel: not-a-tunnel\n"
            f"credentials-file: {CREDS_DIR}/{TUNNEL_A}.json\n"
            "ingress:\n"
            "  - hostname: hello.example.test\n"
            "    service: http://app:8080\n"
        )

    problems = validate_config(cfg["config_path"], HOSTS, CREDS_DIR)

    assert "tunnel id has invalid format: not-a-tunnel" in problems
    assert any("does not belong to tunnel" in p for p in problems)
    assert "no ingress rule for health.example.test" in problems
    assert any("catch-all" in p for p in problems)


def test_validate_unreadable_yaml(cfg):
    with open(cfg["config_path"], "w") as f:
        f.write("tunnel: [unclosed\n")

    problems = validate_config(cfg["config_path"], HOSTS, CREDS_DIR)

    assert len(problems) == 1
    assert problems[0].startswith("invalid YAML")


def test_quoted_values_and_trailing_comments():
    before = (
        f'tunnel: "{TUNNEL_B}"  # prod\n'
        f"credentials-file: '{CREDS_DIR}/{TUNNEL_B}.json' # mounted by compose\n"
        "ingress:\n  - service: http_status:404\n"
    )

    st = parse_config_text(before)
    assert st.tunnel_id == TUNNEL_B
    assert st.credentials_file == f"{CREDS_DIR}/{TUNNEL_B}.json"

    after = rewrite_config_text(before, TUNNEL_A, credentials_file_for(CREDS_DIR, TUNNEL_A))

    assert after.splitlines()[:2] == [
        f'tunnel: "{TUNNEL_A}"  # prod',
        f"credentials-file: '{CREDS_DIR}/{TUNNEL_A}.json' # mounted by compose",
    ]
