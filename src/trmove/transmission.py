"""
Transmission RPC integration.

Only the calls the mover needs: look up a torrent, point it at a new location
without moving data, and start a verification.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests

from trmove.config import Settings
from trmove.errors import RemoteError

logger = logging.getLogger("trmove.transmission")

SESSION_ID_HEADER = "X-Transmission-Session-Id"

TORRENT_FIELDS = ["hashString", "name", "downloadDir", "torrentFile"]


@dataclass
class TransmissionTorrent:
    """Represents a torrent from Transmission."""
    hash: str
    name: str
    download_dir: str
    torrent_file: str


class TransmissionClient:
    """
    Transmission JSON-RPC client.

    Attributes:
        rpc_url: RPC endpoint, e.g. http://127.0.0.1:9091/transmission/rpc
        timeout: Seconds to wait for a reply; set-location blocks the daemon
            so this is generous
        session: Requests session carrying auth and the CSRF session id
    """

    def __init__(self, rpc_url: str, username: Optional[str] = None,
                 password: Optional[str] = None, timeout: float = 300.0):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.session = requests.Session()
        if username and password:
            self.session.auth = (username, password)

    @property
    def is_local(self) -> bool:
        """True when the daemon runs on this host and shares our filesystem."""
        host = urlparse(self.rpc_url).hostname or ""
        if host == "localhost":
            return True
        try:
            return ipaddress.ip_address(host).is_loopback
        except ValueError:
            return False

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        return self.session.post(self.rpc_url, json=payload, timeout=self.timeout)

    def call(self, method: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Invoke an RPC method and return its ``arguments``.

        A 409 reply carries a fresh session id; the request is repeated once
        with it.

        Raises:
            RemoteError: On transport errors or a non-success result
        """
        payload = {"method": method, "arguments": arguments or {}}
        try:
            response = self._post(payload)
            if response.status_code == 409:
                session_id = response.headers.get(SESSION_ID_HEADER)
                if not session_id:
                    raise RemoteError(f"{method}: 409 without {SESSION_ID_HEADER}")
                self.session.headers[SESSION_ID_HEADER] = session_id
                response = self._post(payload)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise RemoteError(f"{method}: {e}") from e
        except ValueError as e:
            raise RemoteError(f"{method}: invalid JSON reply: {e}") from e

        if not isinstance(data, dict):
            raise RemoteError(f"{method}: unexpected reply: {data!r}")
        result = data.get("result")
        if result != "success":
            raise RemoteError(f"{method}: {result}")
        return data.get("arguments") or {}

    def get_torrents(self, hashes: List[str]) -> List[TransmissionTorrent]:
        arguments = self.call("torrent-get", {"ids": list(hashes), "fields": TORRENT_FIELDS})
        torrents = []
        for t in arguments.get("torrents", []):
            torrents.append(TransmissionTorrent(
                hash=t.get("hashString", ""),
                name=t.get("name", ""),
                download_dir=t.get("downloadDir", ""),
                torrent_file=t.get("torrentFile", ""),
            ))
        return torrents

    def get_torrent(self, torrent_hash: str) -> Optional[TransmissionTorrent]:
        """
        Get one torrent by hash.

        Returns:
            TransmissionTorrent or None if the daemon does not know the hash
        """
        for torrent in self.get_torrents([torrent_hash]):
            if torrent.hash.lower() == torrent_hash.lower():
                return torrent
        return None

    def set_location(self, torrent_hash: str, location: str) -> None:
        """Point a torrent at ``location``. Transmission does not move the data."""
        logger.debug("set-location %s -> %s", torrent_hash, location)
        self.call("torrent-set-location", {
            "ids": [torrent_hash],
            "location": str(location),
            "move": False,
        })

    def verify(self, torrent_hash: str) -> None:
        """Queue a verification. Returns as soon as it is queued."""
        logger.debug("verify %s", torrent_hash)
        self.call("torrent-verify", {"ids": [torrent_hash]})


def get_remote_agent(settings: Settings) -> TransmissionClient:
    """Create the remote agent client from settings."""
    return TransmissionClient(
        settings.rpc_url,
        username=settings.rpc_user,
        password=settings.rpc_pass,
        timeout=settings.rpc_timeout,
    )
