#!/usr/bin/env python3
"""
vMix Tally Sync Manager

Polls a vMix switcher at a fixed interval and notifies camera operators over
Telegram when their camera goes on air or leaves the air. Operators register
with the bot (/camera N); the assignment table lives in SQLite.

Usage:
    tally_sync_manager.py                         # Start daemon (config from env/.env)
    tally_sync_manager.py config.json             # Start daemon with a config file
    tally_sync_manager.py --validate config.json  # Validate configuration
    tally_sync_manager.py --once config.json      # Print current tally once and exit
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import urllib3
from aiohttp import web
from dotenv import load_dotenv

from tally_reconciler import TallyReconciler, dispatch_transitions, format_state
from tally_store import AssignmentStore
from telegram_bot import TelegramBot, TelegramError
from vmix_client import (
    CameraSnapshot,
    SwitcherClientAsync,
    TallyError,
    VmixTally,
    build_base_url,
    create_switcher_client,
)

# Tunnelled switchers are often reached over HTTPS with self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

VERSION = "1.0.0"

DEFAULT_VMIX_PORT = 8088


# ============================================================================
# Configuration Data Classes
# ============================================================================


@dataclass
class SwitcherConfig:
    """
    How to reach the vMix switcher.

    Attributes:
        host: Switcher IP address or hostname (or tunnel hostname)
        port: HTTP port (None = 8088 on LAN, scheme default through a tunnel)
        scheme: "http" or "https" (None = https through a tunnel, http otherwise)
        mode: "bulk" (/api/ XML) or "keyed" (/tallyupdate/ per camera)
        tunnel: Reached through an ngrok-style tunnel; sends the bypass header
        timeout: Per-request timeout in seconds
        camera_count: Cameras listed by status queries in bulk mode
        keys: Camera number -> tally key (keyed mode only)
    """

    host: str = ""
    port: Optional[int] = None
    scheme: Optional[str] = None
    mode: str = "bulk"
    tunnel: bool = False
    timeout: float = 5.0
    camera_count: int = 8
    keys: Dict[int, str] = field(default_factory=dict)

    @property
    def base_url(self) -> str:
        scheme = self.scheme or ("https" if self.tunnel else "http")
        port = self.port
        if port is None and not self.tunnel:
            port = DEFAULT_VMIX_PORT
        return build_base_url(self.host, port, scheme)


@dataclass
class TelegramConfig:
    """
    Attributes:
        token: Bot token
        poll_timeout: getUpdates long-poll timeout in seconds
    """

    token: str = ""
    poll_timeout: int = 30


@dataclass
class ConfigurationRoot:
    """
    Top-level configuration object.

    Attributes:
        switcher: Switcher connection settings
        telegram: Bot settings
        poll_interval_ms: Milliseconds between tally polls
        database_path: SQLite file holding operator assignments
        log_level: Python logging level (DEBUG, INFO, WARNING, ERROR)
        stats_interval: Seconds between statistics reports (None to disable, 0 for auto)
        keepalive_port: Port for the plain-text health endpoint (None to disable)
        max_camera: Highest camera number operators may register for
    """

    switcher: SwitcherConfig = field(default_factory=SwitcherConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    poll_interval_ms: int = 1000
    database_path: str = "tally.db"
    log_level: str = "INFO"
    stats_interval: Optional[int] = None
    keepalive_port: Optional[int] = None
    max_camera: int = 20


# ============================================================================
# Configuration Loading and Validation
# ============================================================================


def parse_keys(value: str) -> Dict[int, str]:
    """
    Parse "1=abc,2=def" into {1: "abc", 2: "def"}.

    Raises:
        ValueError: If an entry is not CAMERA=KEY with an integer camera
    """
    keys = {}
    for entry in value.split(","):
        entry = entry.strip()
        if not entry:
            continue
        camera, sep, key = entry.partition("=")
        if not sep:
            raise ValueError(f"Tally key entry '{entry}' must look like CAMERA=KEY")
        keys[int(camera)] = key.strip()
    return keys


def load_config(config_path: Path) -> ConfigurationRoot:
    """
    Load and parse JSON configuration file.

    Args:
        config_path: Path to JSON configuration file

    Returns:
        Parsed ConfigurationRoot object

    Raises:
        FileNotFoundError: If config file doesn't exist
        json.JSONDecodeError: If JSON is invalid
        ValueError: If a camera key number is not an integer
    """
    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    sw = data.get("switcher", {})
    switcher = SwitcherConfig(
        host=sw.get("host", ""),
        port=sw.get("port"),
        scheme=sw.get("scheme"),
        mode=sw.get("mode", "bulk"),
        tunnel=sw.get("tunnel", False),
        timeout=sw.get("timeout", 5.0),
        camera_count=sw.get("camera_count", 8),
        # JSON object keys are strings
        keys={int(camera): key for camera, key in sw.get("keys", {}).items()},
    )

    tg = data.get("telegram", {})
    telegram = TelegramConfig(
        token=tg.get("token", ""),
        poll_timeout=tg.get("poll_timeout", 30),
    )

    return ConfigurationRoot(
        switcher=switcher,
        telegram=telegram,
        poll_interval_ms=data.get("poll_interval_ms", 1000),
        database_path=data.get("database_path", "tally.db"),
        log_level=data.get("log_level", "INFO"),
        stats_interval=data.get("stats_interval"),
        keepalive_port=data.get("keepalive_port"),
        max_camera=data.get("max_camera", 20),
    )


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def apply_env_overrides(
    config: ConfigurationRoot, environ: Optional[Mapping[str, str]] = None
) -> ConfigurationRoot:
    """
    Overlay environment variables onto a configuration.

    Recognized: VMIX_IP, VMIX_PORT, VMIX_SCHEME, VMIX_MODE, VMIX_TUNNEL,
    VMIX_TIMEOUT, VMIX_KEYS, CAMERA_COUNT, POLL_INTERVAL, TELEGRAM_TOKEN,
    DATABASE_PATH, LOG_LEVEL, PORT.

    Raises:
        ValueError: If a numeric variable is not a number
    """
    env = os.environ if environ is None else environ
    sw = config.switcher

    if env.get("VMIX_IP"):
        sw.host = env["VMIX_IP"]
    if env.get("VMIX_PORT"):
        sw.port = int(env["VMIX_PORT"])
    if env.get("VMIX_SCHEME"):
        sw.scheme = env["VMIX_SCHEME"].lower()
    if env.get("VMIX_MODE"):
        sw.mode = env["VMIX_MODE"].lower()
    if env.get("VMIX_TUNNEL"):
        sw.tunnel = _env_bool(env["VMIX_TUNNEL"])
    if env.get("VMIX_TIMEOUT"):
        sw.timeout = float(env["VMIX_TIMEOUT"])
    if env.get("VMIX_KEYS"):
        sw.keys = parse_keys(env["VMIX_KEYS"])
    if env.get("CAMERA_COUNT"):
        sw.camera_count = int(env["CAMERA_COUNT"])

    if env.get("POLL_INTERVAL"):
        config.poll_interval_ms = int(env["POLL_INTERVAL"])
    if env.get("TELEGRAM_TOKEN"):
        config.telegram.token = env["TELEGRAM_TOKEN"]
    if env.get("DATABASE_PATH"):
        config.database_path = env["DATABASE_PATH"]
    if env.get("LOG_LEVEL"):
        config.log_level = env["LOG_LEVEL"].upper()
    if env.get("PORT"):
        config.keepalive_port = int(env["PORT"])

    return config


def validate_config(config: ConfigurationRoot) -> tuple[bool, List[str]]:
    """
    Validate configuration.

    Args:
        config: Configuration to validate

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []
    sw = config.switcher

    if not sw.host:
        errors.append("switcher.host must not be empty (set VMIX_IP)")

    if sw.mode not in ("bulk", "keyed"):
        errors.append(f"switcher.mode must be 'bulk' or 'keyed', got: '{sw.mode}'")

    if sw.mode == "keyed" and not sw.keys:
        errors.append("switcher.keys must not be empty in keyed mode (set VMIX_KEYS)")

    for camera, key in sw.keys.items():
        if camera < 1:
            errors.append(f"switcher.keys: camera number must be >= 1, got: {camera}")
        if not key:
            errors.append(f"switcher.keys: key for camera {camera} must not be empty")

    if sw.port is not None and not (1 <= sw.port <= 65535):
        errors.append(f"switcher.port must be 1-65535, got: {sw.port}")

    if sw.scheme is not None and sw.scheme not in ("http", "https"):
        errors.append(f"switcher.scheme must be 'http' or 'https', got: '{sw.scheme}'")

    if sw.timeout <= 0:
        errors.append(f"switcher.timeout must be > 0, got: {sw.timeout}")

    if sw.camera_count < 1:
        errors.append(f"switcher.camera_count must be >= 1, got: {sw.camera_count}")

    if config.poll_interval_ms <= 0:
        errors.append(f"poll_interval_ms must be > 0, got: {config.poll_interval_ms}")
    elif sw.timeout * 1000 > config.poll_interval_ms:
        logging.info(
            f"switcher.timeout ({sw.timeout}s) is longer than poll_interval_ms "
            f"({config.poll_interval_ms}ms). Slow polls will cause skipped ticks."
        )

    if not config.telegram.token:
        errors.append("telegram.token must not be empty (set TELEGRAM_TOKEN)")

    if config.telegram.poll_timeout < 0:
        errors.append(
            f"telegram.poll_timeout must be >= 0, got: {config.telegram.poll_timeout}"
        )

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level not in valid_log_levels:
        errors.append(
            f"log_level must be one of {valid_log_levels}, got: '{config.log_level}'"
        )

    if config.stats_interval is not None and config.stats_interval < 0:
        errors.append(f"stats_interval must be >= 0, got: {config.stats_interval}")

    if config.keepalive_port is not None and not (1 <= config.keepalive_port <= 65535):
        errors.append(f"keepalive_port must be 1-65535, got: {config.keepalive_port}")

    if config.max_camera < 1:
        errors.append(f"max_camera must be >= 1, got: {config.max_camera}")

    is_valid = len(errors) == 0
    return is_valid, errors


# ============================================================================
# Logging Setup
# ============================================================================


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure Python logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # One line per poll and per long poll otherwise
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ============================================================================
# Client Construction and Connection Testing
# ============================================================================


def create_blocking_client(config: ConfigurationRoot) -> VmixTally:
    sw = config.switcher
    return VmixTally(
        sw.base_url, mode=sw.mode, keys=sw.keys, timeout=sw.timeout, tunnel=sw.tunnel
    )


def create_async_client(config: ConfigurationRoot) -> SwitcherClientAsync:
    sw = config.switcher
    return create_switcher_client(
        sw.mode, sw.base_url, keys=sw.keys, timeout=sw.timeout, tunnel=sw.tunnel
    )


def check_switcher_connection(config: ConfigurationRoot) -> bool:
    """
    Test if the switcher is reachable before starting the poll loop.

    Args:
        config: Configuration root object

    Returns:
        True if one snapshot could be fetched, False otherwise
    """
    logging.info(f"Testing connection to {config.switcher.base_url} ...")
    client = create_blocking_client(config)
    try:
        return client.test_connection()
    finally:
        client.close()


def format_snapshot_table(snapshot: CameraSnapshot, cameras: List[int]) -> List[str]:
    return [f"Camera {camera:2d}: {format_state(snapshot.state_of(camera))}" for camera in cameras]


def cameras_for(config: ConfigurationRoot) -> List[int]:
    sw = config.switcher
    if sw.mode == "keyed":
        return sorted(sw.keys)
    return list(range(1, sw.camera_count + 1))


# ============================================================================
# Keep-alive Endpoint
# ============================================================================


def keepalive_text(config: ConfigurationRoot) -> str:
    return (
        "vMix Tally Bot is running!\n\n"
        "Bot status: Active\n"
        f"Monitoring vMix at: {config.switcher.base_url}\n"
        f"Poll interval: {config.poll_interval_ms}ms\n"
        f"Telegram token: {'Configured' if config.telegram.token else 'Missing'}\n"
    )


def create_keepalive_app(config: ConfigurationRoot) -> web.Application:
    """Plain-text status page answered on any GET path."""
    text = keepalive_text(config)

    async def handle(request: web.Request) -> web.Response:
        return web.Response(text=text)

    app = web.Application()
    app.router.add_get("/{tail:.*}", handle)
    return app


async def start_keepalive_server(config: ConfigurationRoot) -> web.AppRunner:
    """Start the keep-alive app on keepalive_port; call runner.cleanup() to stop it."""
    runner = web.AppRunner(create_keepalive_app(config), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", config.keepalive_port)
    await site.start()
    logging.info(f"Keep-alive endpoint listening on port {config.keepalive_port}")
    return runner


# ============================================================================
# TallyMonitor Class (Poll Loop & Signal Handling)
# ============================================================================


class TallyMonitor:
    """
    Polls the switcher on a fixed interval and relays tally transitions.

    Each tick starts one fetch -> reconcile -> notify cycle as a task. If the
    previous cycle is still running when a tick fires, that tick is skipped,
    so at most one request batch is outstanding against the switcher.
    """

    def __init__(
        self,
        config: ConfigurationRoot,
        client: SwitcherClientAsync,
        store: AssignmentStore,
        sink,
    ):
        """
        Initialize TallyMonitor.

        Args:
            config: Configuration root object
            client: Async switcher client
            store: Operator assignments
            sink: Notification sink (normally the TelegramBot)
        """
        self.config = config
        self.client = client
        self.store = store
        self.sink = sink
        self.reconciler = TallyReconciler(store)
        self.interval = config.poll_interval_ms / 1000.0

        self.running = False
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._cycle_task: Optional[asyncio.Task] = None

        # Runtime statistics
        self.start_time: Optional[float] = None
        self.last_stats_time: Optional[float] = None
        self.tick_count = 0
        self.cycle_count = 0
        self.failed_cycles = 0
        self.skipped_ticks = 0
        self.event_count = 0
        self.delivered_count = 0
        self.undelivered_count = 0
        self.min_cycle_time: Optional[float] = None
        self.max_cycle_time: Optional[float] = None

        # None = disabled, 0 = auto (60s), >0 = explicit
        if config.stats_interval is None:
            self.stats_interval: Optional[float] = None
        elif config.stats_interval == 0:
            self.stats_interval = 60.0
        else:
            self.stats_interval = float(config.stats_interval)

    @property
    def busy(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    def _record_cycle_time(self, duration: float):
        if self.min_cycle_time is None or duration < self.min_cycle_time:
            self.min_cycle_time = duration
        if self.max_cycle_time is None or duration > self.max_cycle_time:
            self.max_cycle_time = duration

    async def run_cycle(self) -> list:
        """
        One poll: fetch a snapshot, reconcile it, deliver notifications.

        A failed fetch leaves the reconciler's previous snapshot untouched.

        Returns:
            The transition events of this cycle (empty on failure)
        """
        self.cycle_count += 1
        start_time = time.monotonic()

        try:
            snapshot = await self.client.fetch_snapshot()
        except TallyError as e:
            self.failed_cycles += 1
            logging.error(f"Poll cycle {self.cycle_count}: {e}. Will retry on next tick.")
            return []
        except Exception as e:
            self.failed_cycles += 1
            logging.error(f"Unexpected error fetching tally in cycle {self.cycle_count}: {e}")
            return []

        logging.debug(f"Tally check: {snapshot.describe()}")

        try:
            events = self.reconciler.reconcile(snapshot)
            result = await dispatch_transitions(events, self.store, self.sink)
        except Exception as e:
            self.failed_cycles += 1
            logging.error(f"Error reconciling tally in cycle {self.cycle_count}: {e}")
            return []

        duration = time.monotonic() - start_time
        self._record_cycle_time(duration)
        self.event_count += len(events)
        self.delivered_count += result.delivered
        self.undelivered_count += result.failed

        if events:
            logging.info(
                f"Cycle {self.cycle_count}: {len(events)} transition(s), "
                f"{result.delivered} delivered, {result.failed} failed "
                f"({duration * 1000:.0f}ms)"
            )
        return events

    def _tick(self):
        self.tick_count += 1
        if self.busy:
            self.skipped_ticks += 1
            logging.warning(
                f"Tick {self.tick_count}: previous poll still in progress, skipping. "
                f"Consider increasing poll_interval_ms or lowering the switcher timeout."
            )
            return
        self._cycle_task = asyncio.create_task(self.run_cycle())

    async def poll_forever(self, stop_event: asyncio.Event):
        """
        Tick every poll interval until stop_event is set.

        The in-flight cycle is allowed to finish before returning.
        """
        next_tick = time.monotonic()
        while not stop_event.is_set():
            now = time.monotonic()
            if now < next_tick:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=next_tick - now)
                except asyncio.TimeoutError:
                    pass
                continue

            next_tick += self.interval
            if next_tick <= now:
                # Fell behind (suspended process, blocked loop); don't burst
                next_tick = now + self.interval

            self._tick()
            self._maybe_print_statistics()

        if self._cycle_task is not None:
            await asyncio.gather(self._cycle_task, return_exceptions=True)

    def _format_uptime(self, seconds: float) -> str:
        """
        Format uptime in human-readable format.

        Args:
            seconds: Uptime in seconds

        Returns:
            Formatted string (e.g., "2h 15m 30s" or "45m 12s" or "23s")
        """
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"

    def _print_statistics(self):
        if self.start_time is None:
            return

        uptime = time.monotonic() - self.start_time
        ok_cycles = self.cycle_count - self.failed_cycles
        success_rate = (ok_cycles / self.cycle_count * 100) if self.cycle_count else 0.0

        logging.info("=" * 70)
        logging.info("RUNTIME STATISTICS")
        logging.info("=" * 70)
        logging.info(f"Uptime:           {self._format_uptime(uptime)}")
        logging.info(
            f"Poll cycles:      {self.cycle_count} ({ok_cycles} ok, {self.failed_cycles} failed, "
            f"{self.skipped_ticks} ticks skipped)"
        )
        logging.info(f"Success rate:     {success_rate:.1f}%")
        logging.info(f"Transitions:      {self.event_count}")
        logging.info(
            f"Notifications:    {self.delivered_count} delivered, {self.undelivered_count} failed"
        )
        if self.min_cycle_time is not None and self.max_cycle_time is not None:
            logging.info(
                f"Min/Max cycle:    {self.min_cycle_time * 1000:.0f}ms / {self.max_cycle_time * 1000:.0f}ms"
            )
        logging.info("=" * 70)

    def _maybe_print_statistics(self):
        if self.stats_interval is None or self.last_stats_time is None:
            return
        if time.monotonic() - self.last_stats_time >= self.stats_interval:
            self._print_statistics()
            self.last_stats_time = time.monotonic()

    def _shutdown(self, signum, frame):
        """
        Signal handler for graceful shutdown.

        Args:
            signum: Signal number
            frame: Current stack frame
        """
        signal_names = {signal.SIGINT: "SIGINT", signal.SIGTERM: "SIGTERM"}
        signal_name = signal_names.get(signum, f"signal {signum}")
        logging.info(f"Received interrupt signal ({signal_name})")
        logging.info("Shutting down gracefully...")
        self.running = False
        if self.loop is not None and self._stop_event is not None:
            self.loop.call_soon_threadsafe(self._stop_event.set)

    async def _run_async(self):
        self.loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        if not self.running:
            self._stop_event.set()

        self.start_time = time.monotonic()
        self.last_stats_time = self.start_time

        await self.client.initialize()

        bot_task: Optional[asyncio.Task] = None
        keepalive: Optional[web.AppRunner] = None
        try:
            if isinstance(self.sink, TelegramBot):
                me = await self.sink.get_me()
                logging.info(f"Telegram bot @{me.get('username')} connected")
                bot_task = asyncio.create_task(self.sink.run_polling(self._stop_event))

            if self.config.keepalive_port is not None:
                keepalive = await start_keepalive_server(self.config)

            if self.stats_interval is None:
                logging.info("Statistics reporting: disabled")
            else:
                logging.info(f"Statistics will be reported every {self.stats_interval:.0f}s")

            logging.info(
                f"Monitoring tally every {self.config.poll_interval_ms}ms "
                f"({self.client.mode} mode)"
            )
            await self.poll_forever(self._stop_event)

        finally:
            if bot_task is not None:
                bot_task.cancel()
                await asyncio.gather(bot_task, return_exceptions=True)
            if keepalive is not None:
                await keepalive.cleanup()

            logging.info("Closing clients...")
            await self.client.close()
            if isinstance(self.sink, TelegramBot):
                await self.sink.close()

            if self.stats_interval is not None and self.cycle_count > 0:
                logging.info("")
                logging.info("FINAL STATISTICS SUMMARY")
                self._print_statistics()

    def run(self) -> int:
        """
        Main poll loop - runs continuously until interrupted.

        Returns:
            Process exit code
        """
        signal.signal(signal.SIGINT, self._shutdown)
        signal.signal(signal.SIGTERM, self._shutdown)

        self.running = True
        logging.info(f"Starting tally monitor (interval: {self.config.poll_interval_ms}ms)")

        try:
            asyncio.run(self._run_async())
        except TelegramError as e:
            logging.error(f"Telegram bot could not start: {e}. Check TELEGRAM_TOKEN.")
            return 2
        except KeyboardInterrupt:
            logging.info("Received interrupt during async loop")
        finally:
            self.store.close()
            logging.info("Tally monitor stopped. Goodbye!")
        return 0


# ============================================================================
# Main Entry Point
# ============================================================================


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI usage."""
    parser = argparse.ArgumentParser(
        description="vMix Tally Sync Manager - Notify camera operators over Telegram\n"
        "when their camera goes on air.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  tally_sync_manager.py                            Start daemon, config from env/.env
  tally_sync_manager.py config.json                Start daemon with config
  tally_sync_manager.py --validate config.json     Validate configuration
  tally_sync_manager.py --once config.json         Print current tally and exit

Environment:
  VMIX_IP, VMIX_PORT, VMIX_MODE, VMIX_TUNNEL, VMIX_KEYS, POLL_INTERVAL,
  TELEGRAM_TOKEN, DATABASE_PATH, LOG_LEVEL, PORT override the config file.

Signals:
  SIGINT/SIGTERM - Graceful shutdown after completing current poll
        """,
    )

    parser.add_argument(
        "-v",
        "--validate",
        action="store_true",
        help="Validate configuration and exit (don't start daemon)",
    )

    parser.add_argument(
        "-V", "--version", action="store_true", help="Show version and exit"
    )

    parser.add_argument(
        "-1",
        "--once",
        action="store_true",
        help="Print the current tally once and exit (no daemon mode)",
    )

    parser.add_argument(
        "config_file",
        metavar="CONFIG_FILE",
        type=str,
        nargs="?",
        help="Path to JSON configuration file (optional, env is used otherwise)",
    )

    args = parser.parse_args(argv)

    if args.version:
        print(f"vMix Tally Sync Manager v{VERSION}")
        print(f"Python {sys.version.split()[0]}")
        return 0

    load_dotenv()

    try:
        if args.config_file:
            config_path = Path(args.config_file)
            if not config_path.exists():
                print(f"✗ Configuration file not found: {config_path}", file=sys.stderr)
                print(
                    "  See config.example.json for an example configuration.",
                    file=sys.stderr,
                )
                return 1
            config = load_config(config_path)
        else:
            config = ConfigurationRoot()
        apply_env_overrides(config)
    except json.JSONDecodeError as e:
        print("✗ Configuration file has invalid JSON syntax:", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        print(f"  Line {e.lineno}, Column {e.colno}", file=sys.stderr)
        return 1
    except ValueError as e:
        print("✗ Configuration has an invalid value:", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        return 1

    is_valid, errors = validate_config(config)

    if args.validate:
        print(f"Validating configuration{f' file: {args.config_file}' if args.config_file else ' from environment'}")
        if is_valid:
            print("✓ Configuration is valid")
            print(f"  - Switcher: {config.switcher.base_url} ({config.switcher.mode} mode)")
            if config.switcher.mode == "keyed":
                print(f"  - {len(config.switcher.keys)} camera key(s) configured")
            print(f"  - Poll interval: {config.poll_interval_ms} ms")
            return 0
        else:
            print("✗ Configuration is invalid:")
            for error in errors:
                print(f"  - {error}")
            return 1

    # One-shot status does not need the bot token
    if args.once:
        errors = [e for e in errors if not e.startswith("telegram.")]
        is_valid = not errors

    if not is_valid:
        print("✗ Configuration is invalid:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        print(
            "\nRun with --validate flag to see detailed validation results.",
            file=sys.stderr,
        )
        return 1

    setup_logging(config.log_level)
    logging.info(f"Starting vMix Tally Sync Manager v{VERSION}")

    if args.once:
        client = create_blocking_client(config)
        try:
            snapshot = client.fetch_snapshot()
        except TallyError as e:
            logging.error(f"Cannot reach switcher at {config.switcher.base_url}: {e}")
            return 2
        finally:
            client.close()

        print(snapshot.describe())
        for line in format_snapshot_table(snapshot, cameras_for(config)):
            print(line)
        return 0

    # Abort startup if the switcher is unreachable
    if not check_switcher_connection(config):
        logging.error(
            f"Switcher at {config.switcher.base_url} is unreachable. "
            f"Check network connectivity, VMIX_IP/VMIX_PORT and the tunnel."
        )
        return 2
    logging.info(f"Connected to vMix at {config.switcher.base_url}")

    store = AssignmentStore(config.database_path)
    client = create_async_client(config)
    bot = TelegramBot(
        config.telegram.token,
        store,
        client,
        camera_count=config.switcher.camera_count,
        max_camera=config.max_camera,
        poll_timeout=config.telegram.poll_timeout,
    )

    monitor = TallyMonitor(config, client, store, bot)
    return monitor.run()


if __name__ == "__main__":
    sys.exit(main())
