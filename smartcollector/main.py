"""Main entry point for the SmartThings textfile collector.

This module handles:
- Loading configuration from command-line flags (with .env / environment fallbacks)
- Authenticating and reading every device's attributes
- Converting attributes to time series and saving them for the node exporter

Meant to be run periodically from cron; every run replaces the textfile
and any error aborts the run with a non-zero exit status.
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from dotenv import find_dotenv, load_dotenv

from smartcollector import __version__
from smartcollector.collector import SensorValueError, device_time_series
from smartcollector.smartthings import (
    DEFAULT_TIMEOUT,
    SmartThingsAuthError,
    SmartThingsClient,
    SmartThingsFetchError,
    Token,
    TokenStore,
    get_token,
)
from smartcollector.textfile import TextfileError, write_output

# Configure module logger
logger = logging.getLogger(__name__)

# Token cache lives in the home directory as <prefix>_<client id>.json
TOKEN_FILE_PREFIX = ".smartcollector"

# Where the node exporter looks for textfile collector files
# (--collector.textfile.directory)
TEXTFILE_COLLECTOR_DIR = "/run/textfile_collector"


class ConfigError(Exception):
    """Exception raised for missing or invalid configuration."""
    pass


@dataclass
class Config:
    """Collector configuration.

    Attributes:
        client: OAuth client id
        secret: OAuth client secret (only needed on first run)
        textfile_dir: Node exporter textfile directory
        dry_run: Print time series instead of saving them
        timeout: HTTP timeout in seconds
        verbose: Log progress at INFO level
    """
    client: str
    secret: str = ""
    textfile_dir: str = TEXTFILE_COLLECTOR_DIR
    dry_run: bool = False
    timeout: float = DEFAULT_TIMEOUT
    verbose: bool = False

    @property
    def token_file(self) -> Path:
        return Path.home() / f"{TOKEN_FILE_PREFIX}_{self.client}.json"


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser, using environment variables as defaults.

    Environment:
        SMARTCOLLECTOR_CLIENT: OAuth client id
        SMARTCOLLECTOR_SECRET: OAuth secret
        SMARTCOLLECTOR_TEXTFILE_DIR: Textfile collector directory
        SMARTCOLLECTOR_TIMEOUT: HTTP timeout in seconds
    """
    parser = argparse.ArgumentParser(
        prog="smartcollector",
        description="Save SmartThings sensor data as a Prometheus textfile.",
    )
    parser.add_argument(
        "--client",
        default=os.getenv("SMARTCOLLECTOR_CLIENT", ""),
        help="OAuth Client ID",
    )
    parser.add_argument(
        "--secret",
        default=os.getenv("SMARTCOLLECTOR_SECRET", ""),
        help="OAuth Secret (only needed on first run)",
    )
    parser.add_argument(
        "--textfile-dir",
        default=os.getenv("SMARTCOLLECTOR_TEXTFILE_DIR", TEXTFILE_COLLECTOR_DIR),
        help="Textfile Collector directory (default: %(default)s)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Just print the values (don't save to file)",
    )
    parser.add_argument(
        "--timeout",
        default=os.getenv("SMARTCOLLECTOR_TIMEOUT", str(DEFAULT_TIMEOUT)),
        help="HTTP timeout in seconds (default: %(default)s)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log progress messages",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def load_config(argv: Optional[Sequence[str]] = None) -> Config:
    """Load configuration from .env, the environment and command-line flags.

    Flags take precedence over the environment.

    Raises:
        ConfigError: If the client id is missing or the timeout is invalid
    """
    load_dotenv(find_dotenv(usecwd=True))
    args = build_parser().parse_args(argv)

    if not args.client:
        raise ConfigError("Must specify Client ID (--client)")

    try:
        timeout = float(args.timeout)
    except ValueError:
        raise ConfigError(f"Invalid timeout: {args.timeout!r}")
    if timeout <= 0:
        raise ConfigError(f"Timeout must be positive, got {timeout}")

    return Config(
        client=args.client,
        secret=args.secret,
        textfile_dir=args.textfile_dir,
        dry_run=args.dry_run,
        timeout=timeout,
        verbose=args.verbose,
    )


def collect(client: SmartThingsClient) -> List[str]:
    """Read every device and return all of their time series lines.

    Raises:
        SmartThingsFetchError: If a device list or device read fails
        SensorValueError: On the first attribute that can't be interpreted
    """
    lines = []

    for device in client.get_devices():
        info = client.get_device_info(device.id)
        series = device_time_series(info)
        logger.debug(f"Device {info.id} ({info.display_name}): {len(series)} series")
        lines.extend(series)

    return lines


def run(
    config: Config,
    client_factory: Optional[Callable[[Token, float], SmartThingsClient]] = None,
) -> List[str]:
    """Execute the authenticate, collect and save flow.

    Args:
        config: Collector configuration
        client_factory: Builds the API client from a token and timeout
            (default: SmartThingsClient)

    Returns:
        The time series lines that were saved (or printed)
    """
    token = get_token(
        TokenStore(config.token_file),
        config.client,
        config.secret,
        timeout=config.timeout,
    )
    client_factory = client_factory or SmartThingsClient
    client = client_factory(token, config.timeout)

    lines = collect(client)
    logger.info(f"Collected {len(lines)} time series")

    write_output(lines, config.textfile_dir, dry_run=config.dry_run)
    return lines


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    try:
        config = load_config(argv)
    except ConfigError as e:
        logging.basicConfig(format="%(message)s")
        logger.error(str(e))
        return 1

    # stdout is reserved for --dry-run output
    logging.basicConfig(
        level=logging.INFO if config.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )

    try:
        run(config)
    except SmartThingsAuthError as e:
        logger.error(f"Error fetching token: {e}")
        return 1
    except SmartThingsFetchError as e:
        logger.error(f"Error reading devices: {e}")
        return 1
    except SensorValueError as e:
        logger.error(
            f"Error processing sensor data (device {e.device_id}, attribute {e.attribute}): {e}"
        )
        return 1
    except TextfileError as e:
        logger.error(f"Error saving timeseries: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
