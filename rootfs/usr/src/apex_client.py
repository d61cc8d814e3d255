"""
Apex Client

Thin HTTP adapter over the controller's status and command endpoints.
"""

import base64
import logging
import urllib.error
import urllib.parse
import urllib.request

from constants import FeedCycle, OutletCommandState
from exceptions import TransportError
from protocol import parse_status_xml
from state import StatusSnapshot

logger = logging.getLogger(__name__)

STATUS_PATH = "/cgi-bin/status.xml"
COMMAND_PATH = "/status.sht"

_OUTLET_STATE_CODES = {
    OutletCommandState.AUTO: "0",
    OutletCommandState.OFF: "1",
    OutletCommandState.ON: "2",
}

_FEED_SELECTIONS = {
    FeedCycle.A: "0",
    FeedCycle.B: "1",
    FeedCycle.C: "2",
    FeedCycle.D: "3",
    FeedCycle.CANCEL: "5",
}


class ApexClient:
    """Client for a single Apex controller."""

    def __init__(self, host: str, username: str | None = None, password: str | None = None, timeout: float = 10.0):
        if "://" not in host:
            host = f"http://{host}"
        self.base_url = host.rstrip("/")
        self.timeout = timeout
        self._auth_header = None
        if username:
            token = base64.b64encode(f"{username}:{password or ''}".encode()).decode("ascii")
            self._auth_header = f"Basic {token}"

    def _request(self, path: str, form: dict[str, str] | None = None) -> bytes:
        url = self.base_url + path
        data = urllib.parse.urlencode(form).encode() if form is not None else None
        req = urllib.request.Request(url, data=data)
        if self._auth_header:
            req.add_header("Authorization", self._auth_header)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                if response.status != 200:
                    raise TransportError(
                        f"Apex returned HTTP {response.status} for {path}", endpoint=path, status_code=response.status
                    )
                return response.read()
        except urllib.error.HTTPError as e:
            raise TransportError(f"Apex returned HTTP {e.code} for {path}", endpoint=path, status_code=e.code) from e
        except (urllib.error.URLError, OSError) as e:
            raise TransportError(f"Apex request to {path} failed: {e}", endpoint=path) from e

    def get_status(self) -> StatusSnapshot:
        """Fetch and parse the current controller status."""
        body = self._request(STATUS_PATH)
        try:
            return parse_status_xml(body)
        except ValueError as e:
            raise TransportError(f"Invalid status document: {e}", endpoint=STATUS_PATH) from e

    def set_outlet(self, name: str, state: OutletCommandState) -> None:
        """Switch an outlet on, off or back to its program."""
        logger.info(f"Setting outlet '{name}' to {state}")
        self._request(COMMAND_PATH, {f"{name}_state": _OUTLET_STATE_CODES[state], "Update": "Update"})

    def set_feed_cycle(self, cycle: FeedCycle) -> None:
        """Start a feed cycle, or cancel the running one."""
        logger.info(f"Setting feed cycle {cycle}")
        action = "Cancel" if cycle == FeedCycle.CANCEL else "Feed"
        self._request(COMMAND_PATH, {"FeedCycle": action, "FeedSel": _FEED_SELECTIONS[cycle]})
