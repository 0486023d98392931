#!/usr/bin/env python3
"""
Buspoll - Device Property Polling Service

Polls device properties over a Modbus bus on per-item refresh intervals,
publishes changed states to the host state files and writes commands
back to the devices.

Usage:
    buspoll                        # Start with default config
    buspoll --config my.yaml       # Use custom config file
    buspoll --dry-run              # Validate config and exit
    buspoll --verbose              # Enable debug logging
"""

import argparse
import asyncio
import logging
import sys

from buspoll import __version__
from buspoll.common.config import BindingType, ServiceConfig, load_config_file
from buspoll.common.exceptions import BuspollError
from buspoll.common.logging_setup import set_log_level, setup_logging
from buspoll.services.binding.provider import BindingValidator
from buspoll.services.binding.service import BindingService

# Default configuration path
DEFAULT_CONFIG_PATH = "config.yaml"


def load_config(config_path: str) -> ServiceConfig:
    """
    Load configuration from YAML file, exiting on error.

    Args:
        config_path: Path to configuration file

    Returns:
        Parsed ServiceConfig
    """
    try:
        return load_config_file(config_path)
    except BuspollError as e:
        print(f"Error loading configuration: {e}")
        sys.exit(1)


def validate_config(config: ServiceConfig) -> bool:
    """
    Validate the binding definitions.

    Returns:
        True if configuration is valid
    """
    is_valid, errors = BindingValidator().validate(config.bindings)

    if not is_valid:
        print("Configuration errors:")
        for error in errors:
            print(f"  - {error}")
        return False

    return True


def print_startup_banner(config: ServiceConfig):
    """Print startup information."""
    connection = config.connection
    max_jobs = config.scheduler.max_jobs

    print()
    print("=" * 60)
    print(f"  BUSPOLL v{__version__}")
    print("=" * 60)
    print()
    print(f"  Bus:        modbus://{connection.host}:{connection.port}")
    print(f"  Bindings:   {len(config.bindings)}")
    print(f"  Workers:    {config.scheduler.max_workers}")
    print(f"  Max jobs:   {max_jobs if max_jobs is not None else 'unbounded'}")
    print(f"  Post only changed values: {config.post_only_changed_values}")
    print(f"  Health:     http://127.0.0.1:{config.health_port}/health")
    print()
    print("=" * 60)
    print()


def print_bindings(config: ServiceConfig):
    """Print the declared bindings."""
    print("Bindings:")
    for binding in config.bindings:
        if binding.type == BindingType.CONTROL:
            targets = ", ".join(binding.targets) or "all"
            print(f"  - {binding.item}: control {binding.control.value} -> {targets}")
        else:
            print(
                f"  - {binding.item}: {binding.type.value} {binding.path} "
                f"(refresh={binding.refresh}, converter={binding.converter.value})"
            )
    print()


async def main_async(config_path: str, config: ServiceConfig, verbose: bool = False):
    """
    Async main function that runs the binding service.

    Args:
        config_path: Path the configuration was loaded from
        config: Parsed configuration
        verbose: Enable verbose logging
    """
    log_level = "DEBUG" if verbose else config.log_level
    # Plain text in verbose/debug mode
    json_format = not verbose
    setup_logging("main", log_level=log_level, json_format=json_format)
    set_log_level(log_level)

    logger = logging.getLogger("buspoll.main")
    logger.info(f"Starting buspoll v{__version__}")

    service = BindingService(config_path=config_path, config=config)

    try:
        await service.run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.critical(f"Binding service failed: {e}")
        raise


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Buspoll - device property polling service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    buspoll                        # Start with default config
    buspoll --config my.yaml       # Use custom config file
    buspoll --dry-run              # Validate config and exit
    buspoll -v                     # Enable debug logging
        """
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {DEFAULT_CONFIG_PATH})"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without starting"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (debug) logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"buspoll v{__version__}"
    )

    args = parser.parse_args()

    config = load_config(args.config)

    if not validate_config(config):
        sys.exit(1)

    print_startup_banner(config)

    if args.dry_run:
        print("Dry run mode - configuration valid")
        print_bindings(config)
        print("Exiting without starting services")
        sys.exit(0)

    print("Starting binding service...")
    print("Press Ctrl+C to stop")
    print()

    try:
        asyncio.run(main_async(args.config, config, verbose=args.verbose))
    except KeyboardInterrupt:
        print("\nStopped by user")
    except Exception as e:
        print(f"\nFatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
