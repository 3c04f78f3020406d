"""
vMix Tally Client

Reads the live program/preview state of a vMix switcher and normalizes it into
a CameraSnapshot. Two wire strategies are supported:

    bulk   GET {base_url}/api/                  one XML status document
    keyed  GET {base_url}/tallyupdate/?key=KEY  one colour token per camera

Both strategies are available as async clients (httpx, used by the polling
loop and the chat bot) and through the blocking VmixTally client (requests,
used for the startup probe and one-shot queries). Parsing is shared.
"""

import asyncio
import logging
import re
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

import httpx
import requests

# Header that makes ngrok tunnels return the upstream body instead of an
# interstitial HTML page
TUNNEL_HEADERS = {"ngrok-skip-browser-warning": "true"}

DEFAULT_TIMEOUT = 5.0

PROGRAM_COLOR = "#FF0000"
PREVIEW_COLOR = "#FFFF00"

_COLOR_TOKEN = re.compile(r"#[0-9A-Fa-f]{6}")


# ============================================================================
# Errors
# ============================================================================


class TallyError(Exception):
    """Base class for every switcher failure."""


class ConnectivityError(TallyError):
    """Network failure, timeout or non-2xx response from the switcher."""


class ProtocolError(TallyError):
    """The switcher answered, but the body could not be understood."""


class ConfigurationError(TallyError):
    """A camera was requested that has no configured tally key."""


# ============================================================================
# Snapshot Model
# ============================================================================


class TallyState(Enum):
    PROGRAM = "program"
    PREVIEW = "preview"
    OFF = "off"


@dataclass(frozen=True)
class CameraSnapshot:
    """
    One point-in-time reading of program/preview membership.

    Attributes:
        program: Camera numbers currently on air
        preview: Camera numbers staged on preview
        unknown: Cameras whose state could not be read this time
        captured_at: Unix timestamp of the reading
    """

    program: frozenset = frozenset()
    preview: frozenset = frozenset()
    unknown: frozenset = frozenset()
    captured_at: float = field(default_factory=time.time)

    def is_on_air(self, camera: int) -> bool:
        return camera in self.program

    def state_of(self, camera: int) -> TallyState:
        """Tri-state for one camera. Program wins over preview."""
        if camera in self.program:
            return TallyState.PROGRAM
        if camera in self.preview:
            return TallyState.PREVIEW
        return TallyState.OFF

    def describe(self) -> str:
        text = (
            f"Program=[{','.join(str(c) for c in sorted(self.program))}] "
            f"Preview=[{','.join(str(c) for c in sorted(self.preview))}]"
        )
        if self.unknown:
            text += f" Unknown=[{','.join(str(c) for c in sorted(self.unknown))}]"
        return text


@dataclass
class VmixStatusDocument:
    """
    The subset of the /api/ XML document that tally cares about.

    Attributes:
        active: Input number on program (None when absent or not numeric)
        preview: Input number on preview (None when absent or not numeric)
        overlays: Input numbers of overlay entries, in document order
    """

    active: Optional[int] = None
    preview: Optional[int] = None
    overlays: List[int] = field(default_factory=list)

    def to_snapshot(self) -> CameraSnapshot:
        program = set()
        if self.active is not None:
            program.add(self.active)
        # An overlay composited onto the program feed is on air as well
        program.update(self.overlays)

        preview = {self.preview} if self.preview is not None else set()
        return CameraSnapshot(program=frozenset(program), preview=frozenset(preview))


# ============================================================================
# Parsing
# ============================================================================


def _parse_input_number(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def parse_status_xml(xml_text: str) -> VmixStatusDocument:
    """
    Decode a vMix /api/ response.

    Args:
        xml_text: Raw response body

    Returns:
        Parsed VmixStatusDocument; missing fields keep their defaults

    Raises:
        ProtocolError: If the body is not XML or the root is not <vmix>
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ProtocolError(f"Switcher returned unparseable XML: {e}") from e

    if root.tag != "vmix":
        raise ProtocolError(f"Unexpected XML root element <{root.tag}>, expected <vmix>")

    document = VmixStatusDocument(
        active=_parse_input_number(root.findtext("active")),
        preview=_parse_input_number(root.findtext("preview")),
    )

    # Assumes @number names the input shown on that overlay. Stock vMix lists
    # every overlay channel here with @number as the channel index, so on such
    # a switcher cameras 1..N would always read as on air.
    for overlay in root.findall("overlays/overlay"):
        number = _parse_input_number(overlay.get("number"))
        if number is not None and number not in document.overlays:
            document.overlays.append(number)

    return document


def parse_tally_token(body: str) -> TallyState:
    """
    Classify a /tallyupdate/ response by the first #RRGGBB token it contains.

    Red means program, yellow means preview, anything else is off.
    """
    match = _COLOR_TOKEN.search(body or "")
    if match is None:
        return TallyState.OFF

    token = match.group(0).upper()
    if token == PROGRAM_COLOR:
        return TallyState.PROGRAM
    if token == PREVIEW_COLOR:
        return TallyState.PREVIEW
    return TallyState.OFF


def snapshot_from_states(
    states: Dict[int, TallyState], unknown: Iterable[int] = ()
) -> CameraSnapshot:
    """Assemble per-camera keyed results into one snapshot."""
    program = frozenset(c for c, s in states.items() if s is TallyState.PROGRAM)
    preview = frozenset(c for c, s in states.items() if s is TallyState.PREVIEW)
    return CameraSnapshot(program=program, preview=preview, unknown=frozenset(unknown))


def build_base_url(
    host: str, port: Optional[int] = None, scheme: str = "http"
) -> str:
    """
    Build the switcher base URL.

    Args:
        host: Hostname or IP, optionally already carrying a scheme
        port: TCP port, or None to use the scheme default (tunnels)
        scheme: "http" or "https"
    """
    if "://" in host:
        return host.rstrip("/")
    if port is None:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


# ============================================================================
# Async Clients (httpx)
# ============================================================================


class SwitcherClientAsync:
    """
    Base class for the async switcher strategies.

    Holds one persistent httpx.AsyncClient; call initialize() once at startup
    and close() at shutdown, or use it as an async context manager.
    """

    mode = ""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        tunnel: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: Switcher base URL, e.g. "http://192.168.1.20:8088"
            timeout: Per-request timeout in seconds
            tunnel: Send the tunnel bypass header on every request
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = dict(TUNNEL_HEADERS) if tunnel else {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def initialize(self):
        """Create the persistent async client. Safe to call twice."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.headers,
                timeout=self.timeout,
                verify=False,
                transport=self._transport,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get(self, url: str, params: Optional[dict] = None) -> str:
        """
        GET a URL and return its body text.

        Raises:
            ConnectivityError: On timeout, transport failure or non-2xx status
        """
        await self.initialize()
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            return response.text
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"Timeout ({self.timeout}s) requesting {url}") from e
        except httpx.HTTPStatusError as e:
            raise ConnectivityError(
                f"HTTP {e.response.status_code} from {url}"
            ) from e
        except httpx.HTTPError as e:
            raise ConnectivityError(f"Cannot reach switcher at {url}: {e}") from e

    async def fetch_snapshot(self) -> CameraSnapshot:
        raise NotImplementedError

    async def fetch_camera_state(self, camera: int) -> TallyState:
        snapshot = await self.fetch_snapshot()
        return snapshot.state_of(camera)

    async def test_connection(self) -> bool:
        """One fetch; True if it produced a snapshot."""
        try:
            await self.fetch_snapshot()
            return True
        except TallyError as e:
            logging.debug(f"Switcher connection test failed: {e}")
            return False


class BulkTallyClient(SwitcherClientAsync):
    """Reads the whole tally from the /api/ XML status document."""

    mode = "bulk"

    async def fetch_snapshot(self) -> CameraSnapshot:
        body = await self._get(f"{self.base_url}/api/")
        return parse_status_xml(body).to_snapshot()


class KeyedTallyClient(SwitcherClientAsync):
    """
    Reads tally one camera at a time from /tallyupdate/?key=KEY.

    Lookups run concurrently. A camera whose lookup fails is logged and
    listed in the snapshot's unknown set; only a failure of every camera raises.
    """

    mode = "keyed"

    def __init__(self, base_url: str, keys: Dict[int, str], **kwargs):
        """
        Args:
            base_url: Switcher base URL
            keys: Camera number -> tally key
            **kwargs: Passed to SwitcherClientAsync
        """
        super().__init__(base_url, **kwargs)
        self.keys = dict(sorted(keys.items()))

    async def _fetch_state(self, camera: int) -> TallyState:
        key = self.keys.get(camera)
        if key is None:
            raise ConfigurationError(f"No tally key configured for camera {camera}")
        body = await self._get(f"{self.base_url}/tallyupdate/", params={"key": key})
        return parse_tally_token(body)

    async def fetch_camera_state(self, camera: int) -> TallyState:
        return await self._fetch_state(camera)

    async def fetch_snapshot(self) -> CameraSnapshot:
        if not self.keys:
            raise ConfigurationError("Keyed mode needs at least one camera key")

        cameras = list(self.keys)
        results = await asyncio.gather(
            *(self._fetch_state(camera) for camera in cameras),
            return_exceptions=True,
        )

        states: Dict[int, TallyState] = {}
        unknown: List[int] = []
        for camera, result in zip(cameras, results):
            if isinstance(result, Exception):
                unknown.append(camera)
                logging.warning(
                    f"Tally lookup for camera {camera} failed, state unknown this poll: {result}"
                )
            else:
                states[camera] = result

        if len(unknown) == len(cameras):
            raise ConnectivityError(
                f"All {len(unknown)} keyed tally lookups failed; switcher unreachable"
            )

        return snapshot_from_states(states, unknown)


def create_switcher_client(
    mode: str,
    base_url: str,
    keys: Optional[Dict[int, str]] = None,
    timeout: float = DEFAULT_TIMEOUT,
    tunnel: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SwitcherClientAsync:
    """
    Build the async client for a switcher mode.

    Raises:
        ValueError: If the mode is not "bulk" or "keyed"
    """
    if mode == "bulk":
        return BulkTallyClient(base_url, timeout=timeout, tunnel=tunnel, transport=transport)
    if mode == "keyed":
        return KeyedTallyClient(
            base_url, keys or {}, timeout=timeout, tunnel=tunnel, transport=transport
        )
    raise ValueError(f"Unsupported switcher mode: {mode!r} (expected 'bulk' or 'keyed')")


# ============================================================================
# Blocking Client (requests)
# ============================================================================


class VmixTally:
    """
    Blocking client for both switcher strategies.

    Used where no event loop is running: the startup connectivity probe and
    one-shot status queries.
    """

    def __init__(
        self,
        base_url: str,
        mode: str = "bulk",
        keys: Optional[Dict[int, str]] = None,
        timeout: float = DEFAULT_TIMEOUT,
        tunnel: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self.mode = mode
        self.keys = dict(sorted((keys or {}).items()))
        self.timeout = timeout

        # Persistent session for connection pooling (HTTP keep-alive)
        self.session = requests.Session()
        self.session.verify = False
        if tunnel:
            self.session.headers.update(TUNNEL_HEADERS)

    def _get(self, url: str, params: Optional[dict] = None) -> str:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.text
        except requests.exceptions.Timeout as e:
            raise ConnectivityError(f"Timeout ({self.timeout}s) requesting {url}") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "error"
            raise ConnectivityError(f"HTTP {status} from {url}") from e
        except requests.exceptions.RequestException as e:
            raise ConnectivityError(f"Cannot reach switcher at {url}: {e}") from e

    def get_camera_state(self, camera: int) -> TallyState:
        if self.mode == "keyed":
            key = self.keys.get(camera)
            if key is None:
                raise ConfigurationError(f"No tally key configured for camera {camera}")
            return parse_tally_token(
                self._get(f"{self.base_url}/tallyupdate/", params={"key": key})
            )
        return self.fetch_snapshot().state_of(camera)

    def fetch_snapshot(self) -> CameraSnapshot:
        if self.mode != "keyed":
            return parse_status_xml(self._get(f"{self.base_url}/api/")).to_snapshot()

        if not self.keys:
            raise ConfigurationError("Keyed mode needs at least one camera key")

        states: Dict[int, TallyState] = {}
        unknown: List[int] = []
        for camera in self.keys:
            try:
                states[camera] = self.get_camera_state(camera)
            except TallyError as e:
                unknown.append(camera)
                logging.warning(
                    f"Tally lookup for camera {camera} failed, state unknown this poll: {e}"
                )

        if len(unknown) == len(self.keys):
            raise ConnectivityError(
                f"All {len(unknown)} keyed tally lookups failed; switcher unreachable"
            )
        return snapshot_from_states(states, unknown)

    def test_connection(self) -> bool:
        try:
            self.fetch_snapshot()
            return True
        except TallyError as e:
            logging.debug(f"Switcher connection test failed: {e}")
            return False

    def close(self):
        self.session.close()
