"""
system-mqtt - Main Entry Point.

Publishes system statistics from this machine to an MQTT server using
Home Assistant discovery.
"""

import argparse
import asyncio
import getpass
import logging
import logging.handlers
import signal
import socket
import sys
from typing import Callable, Optional

from .core.config import Config, LoggingConfig, get_default_config_path
from .core.credentials import USERNAME_REQUIRED, CredentialResolver
from .core.errors import ConfigError, CredentialError, CredentialReason, SystemMqttError
from .collectors.local_collector import LocalCollector
from .services.mqtt_broker import BrokerSession, default_client_factory
from .services.sensor_registry import SensorRegistry
from .agent.availability import AvailabilityManager
from .agent.poll_loop import PollLoop


logger = logging.getLogger(__name__)

INITIAL_RESTART_DELAY = 5  # seconds
MAX_RESTART_DELAY = 300  # seconds, cap


def setup_logging(config: LoggingConfig, verbose: bool = False):
    """Configure the root logger from the logging section of the config."""
    level = logging.DEBUG if verbose else getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]
    if config.file_path:
        handlers.append(
            logging.handlers.RotatingFileHandler(
                config.file_path,
                maxBytes=config.max_file_size_mb * 1024 * 1024,
                backupCount=config.backup_count,
            )
        )

    logging.basicConfig(level=level, format=config.format, handlers=handlers, force=True)


class SystemMqttApplication:
    """
    Main application that coordinates all components.

    - Resolves the broker password and connects
    - Registers the sensors with Home Assistant
    - Samples and publishes host metrics until shut down
    """

    def __init__(
        self,
        config: Config,
        shutdown: asyncio.Event,
        hostname: Optional[str] = None,
        collector: Optional[LocalCollector] = None,
        client_factory: Callable = default_client_factory,
    ):
        self.config = config
        self.shutdown = shutdown
        self.hostname = hostname or socket.gethostname()
        self.collector = collector or LocalCollector()
        self.resolver = CredentialResolver(config.keyring_service)
        self.client_factory = client_factory

        self.session: Optional[BrokerSession] = None
        self.registry: Optional[SensorRegistry] = None
        self.poll_loop: Optional[PollLoop] = None

    async def run_session(self):
        """One connect, register, publish, disconnect lifecycle."""
        logger.info("Application start.")
        self.poll_loop = None

        # Always before any network I/O.
        credentials = self.resolver.credentials_for(
            self.config.username, self.config.password_source
        )

        self.session = BrokerSession(
            self.config.mqtt_server,
            credentials,
            client_id=f"system-mqtt-{self.hostname}",
            client_factory=self.client_factory,
        )
        await self.session.connect()

        self.registry = SensorRegistry(self.session, self.hostname)
        self.poll_loop = PollLoop(
            self.collector,
            self.registry,
            self.config.drives,
            self.config.update_interval,
            self.shutdown,
        )
        availability = AvailabilityManager.for_host(self.session, self.hostname)

        registry = self.registry
        await availability.run(
            self.poll_loop,
            startup=lambda: registry.register_all(self.config.drives),
        )

    async def run(self) -> int:
        """
        Run until shutdown; returns the process exit status.

        With restart_on_failure set, a failed session is started again after
        a growing delay. Config and credential problems are never retried.
        """
        delay = INITIAL_RESTART_DELAY

        while True:
            try:
                await self.run_session()
                return 0
            except (ConfigError, CredentialError) as e:
                logger.error(f"Fatal error: {e}")
                return 1
            except SystemMqttError as e:
                logger.error(f"Fatal error: {e}")
                if not self.config.restart_on_failure or self.shutdown.is_set():
                    return 1

            if self.poll_loop is not None and self.poll_loop.cycles > 0:
                delay = INITIAL_RESTART_DELAY

            logger.info(f"Restarting in {delay}s")
            try:
                await asyncio.wait_for(self.shutdown.wait(), timeout=delay)
                return 0
            except asyncio.TimeoutError:
                pass
            delay = min(delay * 2, MAX_RESTART_DELAY)


def set_password(config: Config, prompt: Callable[[str], str] = getpass.getpass):
    """Ask for the broker password and store it in the keyring."""
    resolver = CredentialResolver(config.keyring_service)
    if not config.username:
        raise CredentialError(CredentialReason.NOT_SET, USERNAME_REQUIRED)
    password = prompt("Password: ")
    resolver.store(config.username, password)


async def run_agent(config: Config) -> int:
    """Run the agent with SIGINT/SIGTERM wired to a clean shutdown."""
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    app = SystemMqttApplication(config, shutdown)
    return await app.run()


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="system-mqtt",
        description="Push system statistics to an MQTT server."
    )

    parser.add_argument(
        "-c", "--config-file",
        default=None,
        help=f"The configuration file to use (default: {get_default_config_path()})"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("run", help="Run the daemon.")
    subparsers.add_parser(
        "set-password",
        help="Set the password used to log into the MQTT server."
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    config_path = args.config_file or get_default_config_path()
    try:
        config = Config.from_yaml(config_path)
    except ConfigError as e:
        print(f"Failed to load config file: {e}", file=sys.stderr)
        return 1

    if args.command == "set-password":
        try:
            set_password(config)
        except CredentialError as e:
            print(f"Fatal error: {e}", file=sys.stderr)
            return 1
        return 0

    setup_logging(config.logging, args.verbose)
    logger.info(f"Loaded configuration from {config_path}")
    return asyncio.run(run_agent(config))


def run():
    """Entry point for the application."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nShutdown complete")


if __name__ == "__main__":
    run()
