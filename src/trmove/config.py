"""
Settings for trmove.

Values come from, in increasing priority: built-in defaults, an env-style
``KEY=value`` file (``TRMOVE_CONFIG`` or /etc/trmove/trmove.env), and the
process environment.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

DEFAULT_CONFIG_FILE = Path("/etc/trmove/trmove.env")
DEFAULT_TORRENT_ROOT = Path("/var/cache/torrents")
DEFAULT_RPC_URL = "http://127.0.0.1:9091/transmission/rpc"
DEFAULT_FREE_SPACE_TO_LEAVE = "40GiB"

_UNITS = {
    "": 1,
    "b": 1,
    "k": 1000, "kb": 1000, "kib": 1024,
    "m": 1000 ** 2, "mb": 1000 ** 2, "mib": 1024 ** 2,
    "g": 1000 ** 3, "gb": 1000 ** 3, "gib": 1024 ** 3,
    "t": 1000 ** 4, "tb": 1000 ** 4, "tib": 1024 ** 4,
}
_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")


def parse_size(value) -> int:
    """
    Parse a byte size such as ``4096``, ``40GiB`` or ``1.5 GB``.

    Raises:
        ValueError: On an unknown unit or malformed value
    """
    if isinstance(value, int):
        return value
    m = _SIZE_RE.match(str(value))
    if not m:
        raise ValueError(f"invalid size: {value!r}")
    number, unit = m.groups()
    try:
        multiplier = _UNITS[unit.lower()]
    except KeyError:
        raise ValueError(f"invalid size unit: {unit!r}") from None
    return int(float(number) * multiplier)


def parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_env_file(path: Path) -> Dict[str, str]:
    """Read ``KEY=value`` lines, ignoring blanks, comments and quotes."""
    data = {}
    for line in Path(path).read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export "):].strip()
        data[key] = value.strip().strip('"').strip("'")
    return data


@dataclass
class Settings:
    rpc_url: str = DEFAULT_RPC_URL
    rpc_user: Optional[str] = None
    rpc_pass: Optional[str] = None
    rpc_timeout: float = 300.0
    torrent_root: Path = DEFAULT_TORRENT_ROOT
    destinations: List[Path] = field(default_factory=lambda: [DEFAULT_TORRENT_ROOT / "completed"])
    free_space_to_leave: int = parse_size(DEFAULT_FREE_SPACE_TO_LEAVE)
    verify: bool = False
    config_path: Optional[Path] = None


def _find_config_file(environ: Mapping[str, str]) -> Optional[Path]:
    env_path = environ.get("TRMOVE_CONFIG")
    if env_path:
        return Path(env_path)
    if DEFAULT_CONFIG_FILE.exists():
        return DEFAULT_CONFIG_FILE
    return None


def load_settings(config_file: Optional[Path] = None,
                  environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build ``Settings`` from the config file and the environment.

    Raises:
        ValueError: On malformed values
        OSError: If an explicitly named config file cannot be read
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, str] = {}

    path = Path(config_file) if config_file else _find_config_file(environ)
    if path is not None:
        values.update(parse_env_file(path))
    values.update({k: v for k, v in environ.items() if k.startswith("TRMOVE_")})

    settings = Settings(config_path=path)
    if values.get("TRMOVE_RPC_URL"):
        url = values["TRMOVE_RPC_URL"]
        settings.rpc_url = url if "://" in url else f"http://{url}"
    settings.rpc_user = values.get("TRMOVE_RPC_USER") or None
    settings.rpc_pass = values.get("TRMOVE_RPC_PASS") or None
    if values.get("TRMOVE_RPC_TIMEOUT"):
        settings.rpc_timeout = float(values["TRMOVE_RPC_TIMEOUT"])
    if values.get("TRMOVE_TORRENT_ROOT"):
        settings.torrent_root = Path(values["TRMOVE_TORRENT_ROOT"])
        settings.destinations = [settings.torrent_root / "completed"]
    if values.get("TRMOVE_DESTINATIONS"):
        settings.destinations = [
            Path(p) for p in values["TRMOVE_DESTINATIONS"].split(":") if p
        ]
    if values.get("TRMOVE_FREE_SPACE_TO_LEAVE"):
        settings.free_space_to_leave = parse_size(values["TRMOVE_FREE_SPACE_TO_LEAVE"])
    if values.get("TRMOVE_VERIFY"):
        settings.verify = parse_bool(values["TRMOVE_VERIFY"])
    return settings
