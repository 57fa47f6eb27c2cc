#!/usr/bin/env python3
"""
Gesture Sensor Bridge - Daemon

Reads presence and gesture events from the sensor board over serial,
publishes them to events.jsonl for the display UI, and switches the
display off after a sustained absence.

Usage:
    python -m gsb.daemon --port /dev/ttyUSB0
    python -m gsb.daemon --port auto --config /etc/gsb.yaml
"""

import argparse
import logging
import signal
import sys
from typing import Callable, Optional

from .config import BridgeConfig, load_config
from .discovery import DeviceResolver
from .errors import ConfigError
from .event_emitter import EventEmitter
from .event_loop import EventLoop
from .implementations import RealSerialPort, RealFileSystem, RealClock, ConsoleLogger
from .interfaces import (
    ClockInterface, DeviceResolverInterface, EventPublisherInterface,
    FileSystemInterface, LoggerInterface, PowerActionInterface, PowerState,
    SerialPortInterface,
)
from .power import DisplayPowerController
from .power_action import CommandPowerAction
from .session import DeviceSessionManager, SessionResult
from .singleton import SingletonDaemon
from .status_manager import StatusManager

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2

IDLE_SLEEP = 0.05
STATUS_INTERVAL = 1.0


class GestureBridgeDaemon:
    """
    Main daemon that ties all components together.

    Components:
    - DeviceSessionManager: Serial session, parsing, bounded reconnection
    - DisplayPowerController: Debounced display on/off
    - EventEmitter: Publishes presence/gesture events to events.jsonl
    - StatusManager: Writes status.json
    - SingletonDaemon: One daemon per base directory

    Collaborators default to the real implementations and can be injected
    for testing.
    """

    def __init__(
        self,
        config: BridgeConfig,
        port_factory: Optional[Callable[[], SerialPortInterface]] = None,
        resolver: Optional[DeviceResolverInterface] = None,
        publisher: Optional[EventPublisherInterface] = None,
        power_action: Optional[PowerActionInterface] = None,
        filesystem: Optional[FileSystemInterface] = None,
        clock: Optional[ClockInterface] = None,
        logger: Optional[LoggerInterface] = None,
        use_singleton: bool = True,
    ):
        self._config = config
        self._running = False
        self._fs = filesystem or RealFileSystem()
        self._clock = clock or RealClock()
        self._logger = logger or ConsoleLogger()
        self._port_factory = port_factory or RealSerialPort

        self._fs.ensure_dir(config.base_dir)

        self._loop = EventLoop(self._clock)

        self._status_manager = StatusManager(
            filesystem=self._fs,
            clock=self._clock,
            status_path=config.status_path,
        )

        if publisher is None:
            publisher = EventEmitter(
                filesystem=self._fs,
                clock=self._clock,
                events_path=config.events_path,
            )
        self._publisher = publisher

        self._power_action = power_action or CommandPowerAction(
            on_command=config.display_on_command,
            off_command=config.display_off_command,
            env=config.display_env,
            timeout=config.action_timeout,
        )

        self._power = DisplayPowerController(
            power_action=self._power_action,
            loop=self._loop,
            logger=self._logger,
            debounce_seconds=config.debounce_seconds,
            on_state_change=self._on_power_change,
        )

        self._resolver = resolver or DeviceResolver(
            port=config.port,
            list_ports=lambda: RealSerialPort().list_ports(),
            logger=self._logger,
        )

        self._session = DeviceSessionManager(
            port_factory=self._port_factory,
            resolver=self._resolver,
            publisher=self._publisher,
            power_controller=self._power,
            loop=self._loop,
            logger=self._logger,
            baud=config.baud,
            max_attempts=config.max_attempts,
            retry_delay=config.retry_delay,
            status=self._status_manager,
        )

        self._singleton: Optional[SingletonDaemon] = (
            SingletonDaemon(config.base_dir, logger=self._logger) if use_singleton else None
        )

    @property
    def session(self) -> DeviceSessionManager:
        return self._session

    @property
    def power(self) -> DisplayPowerController:
        return self._power

    @property
    def loop(self) -> EventLoop:
        return self._loop

    def _on_power_change(self, state: PowerState) -> None:
        self._status_manager.set_power_state(state)

    def start(self, force: bool = False) -> bool:
        """Start the daemon. Returns True if started successfully.

        Args:
            force: If True, stop any existing daemon first
        """
        self._logger.info("Starting Gesture Sensor Bridge daemon")
        self._logger.info(f"Port: {self._config.port}, Baud: {self._config.baud}")
        self._logger.info(f"Base directory: {self._config.base_dir}")

        if self._singleton and not self._singleton.acquire(
            kill_existing=force, port=self._config.port
        ):
            return False

        session_id = self._clock.now().strftime("gsb_%Y-%m-%d_%H-%M-%S")
        if isinstance(self._publisher, EventEmitter):
            self._publisher.set_session_id(session_id)
        self._status_manager.start_session(
            session_id=session_id,
            baud=self._config.baud,
            max_attempts=self._config.max_attempts,
        )

        self._running = True
        self._session.start()
        return True

    def run(self) -> int:
        """Main daemon loop. Returns the process exit status."""
        last_status_update: Optional[float] = None

        while self._running:
            self._loop.run_pending()

            result = self._session.result
            if result is not None:
                return self._fail_safe(result)

            busy = self._session.poll()

            now = self._clock.monotonic()
            if last_status_update is None or now - last_status_update >= STATUS_INTERVAL:
                self._status_manager.update()
                last_status_update = now

            if not busy:
                self._clock.sleep(IDLE_SLEEP)

        self._shutdown()
        return EXIT_OK

    def stop(self) -> None:
        """Ask the main loop to exit gracefully. Safe from signal handlers."""
        self._running = False

    def _fail_safe(self, result: SessionResult) -> int:
        """Retry budget exhausted: turn the display off and exit non-zero."""
        self._logger.error(
            f"Giving up after {result.attempts} failed attempts ({result.reason})"
        )
        self._status_manager.set_exhausted()

        self._power.fail_safe_off()
        if not self._power_action.join(self._config.failsafe_timeout):
            self._logger.warning("Fail-safe display-off did not finish in time")
        # Deliver the action's completion so the final state is recorded
        self._loop.run_pending()

        self._running = False
        self._shutdown()
        return EXIT_FAILURE

    def _shutdown(self) -> None:
        self._logger.info("Stopping daemon...")
        self._power.cancel()
        self._session.close()
        self._status_manager.update()
        if self._singleton:
            self._singleton.release()
        self._logger.info("Daemon stopped")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Gesture Sensor Bridge - Daemon",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  gsb-daemon --port /dev/ttyUSB0
  gsb-daemon --port auto --debounce 60
  gsb-daemon --config /etc/gsb.yaml --base-dir /run/gsb
        """,
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--port", help="Serial port path or 'auto' (default: auto)")
    parser.add_argument("--baud", type=int, help="Baud rate (default: 9600)")
    parser.add_argument("--base-dir", dest="base_dir", help="Directory for events.jsonl and status.json")
    parser.add_argument("--debounce", dest="debounce_seconds", type=float,
                        help="Seconds without presence before the display turns off (default: 300)")
    parser.add_argument("--max-attempts", dest="max_attempts", type=int,
                        help="Consecutive connection failures before giving up (default: 5)")
    parser.add_argument("--retry-delay", dest="retry_delay", type=float,
                        help="Seconds to wait between reconnect attempts (default: 0)")
    parser.add_argument("--log-level", dest="log_level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    parser.add_argument("--force", action="store_true", help="Stop an existing daemon and take over")
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: Optional[list] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if k not in ("config", "force")}

    try:
        config = load_config(args.config, overrides)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(config.log_level)
    daemon = GestureBridgeDaemon(config)

    def signal_handler(sig, frame):
        daemon.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if not daemon.start(force=args.force):
        return EXIT_FAILURE
    return daemon.run()


if __name__ == "__main__":
    sys.exit(main())
