#!/usr/bin/env python3
"""
Command-line interface for the breakout package.

Note: The analysis engine is meant to be embedded in an application or used
from notebooks. The CLI only reports the version and validates config files.
"""

import argparse
import logging
import sys

import yaml

from .config import load_config

# Setup logging
logger = logging.getLogger(__name__)


def main(argv=None):
    """
    CLI entry point.
    """
    parser = argparse.ArgumentParser(
        description="Breakout analysis package - version and configuration tools"
    )

    parser.add_argument('--version', action='store_true',
                        help='Show version information')
    parser.add_argument('--config', metavar='PATH',
                        help='Load a YAML config file and print the effective settings')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Handle arguments
    if args.version:
        from . import __version__
        print(f"Breakout Package version: {__version__}")
        return 0

    if args.config:
        try:
            config = load_config(args.config)
        except (FileNotFoundError, yaml.YAMLError, ValueError, TypeError) as e:
            logger.error(f"Invalid configuration: {e}")
            return 1
        print(yaml.safe_dump(config.to_dict(), sort_keys=False), end='')
        return 0

    print("Breakout Package - embed BreakoutStore in your application or notebook.")
    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
