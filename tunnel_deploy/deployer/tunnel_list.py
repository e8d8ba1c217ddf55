# tunnel_deploy/deployer/tunnel_list.py
"""
Parsing of the tunnel CLI's text output.

Input contract for `tunnel list` (format "cloudflared-table/1"):

    You can obtain more detailed information for each tunnel with ...
    ID                                   NAME      CREATED              CONNECTIONS
    1e83bc01-0938-41cb-b347-2d331d3bc120 my-tunnel 2024-01-01T00:00:00Z 2xAMS, 2xLHR

  * one tunnel per line, the line starts with a canonical lowercase UUID
  * then whitespace and the tunnel name (no spaces)
  * then more whitespace-separated columns, or end of line
  * every other line (headers, hints, blanks) is ignored

`tunnel create <name>` prints "Created tunnel <name> with id <uuid>".

The planner only sees TunnelListParser.parse(); a CLI release that changes
the layout gets a new parser class with a new version string.
"""
from __future__ import annotations
import re
from typing import List, Optional, Protocol, Tuple

UUID_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"

TUNNEL_ID = re.compile(rf"^{UUID_PATTERN}$")
LIST_LINE = re.compile(rf"^({UUID_PATTERN})\s+(\S+)(?:\s|$)")
CREATED_LINE = re.compile(rf"Created tunnel\s+(\S+)\s+with id\s+({UUID_PATTERN})")

def is_valid_tunnel_id(s: str) -> bool:
    return bool(TUNNEL_ID.match(s or ""))

class TunnelListFormat(Protocol):
    version: str

    def parse(self, text: str) -> List[Tuple[str, str]]: ...

    def parse_created_id(self, text: str) -> Optional[str]: ...

class TunnelListParser:
    version = "cloudflared-table/1"

    def parse(self, text: str) -> List[Tuple[str, str]]:
        """Return (id, name) pairs in output order; duplicates are kept."""
        rows = []
        for line in text.splitlines():
            m = LIST_LINE.match(line.strip())
            if m:
                rows.append((m.group(1), m.group(2)))
        return rows

    def parse_created_id(self, text: str) -> Optional[str]:
        m = CREATED_LINE.search(text)
        return m.group(2) if m else None

DEFAULT_PARSER: TunnelListFormat = TunnelListParser()
