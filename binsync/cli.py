#!/usr/bin/env python3
"""
Command line interface for binsync

Runs the initial full sync and the binlog replication described by a
configuration file.
"""

import argparse
import signal
import sys

from .exceptions import SyncException
from .services.checkpoint_service import CheckpointStore
from .services.config_service import ConfigService
from .sync_service import SyncService
from .utils.logger import setup_logging, get_logger


class SyncCLI:
    """Entry points behind the console commands"""

    def __init__(self):
        self.logger = get_logger()
        self.sync_service = None

    def _setup_signal_handlers(self) -> None:
        def signal_handler(signum, frame):
            self.logger.info("Received signal, initiating graceful shutdown",
                             signal=signal.Signals(signum).name)
            if self.sync_service is not None:
                self.sync_service.request_shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def run_replication(self, config_path: str) -> None:
        self.sync_service = SyncService.from_file(config_path)
        self._setup_signal_handlers()
        self.sync_service.run()

    def test_connection(self, config_path: str) -> None:
        service = SyncService.from_file(config_path)
        if not service.test_connections():
            raise SyncException("Connection test failed")
        self.logger.info("All connections tested successfully")

    def show_position(self, config_path: str) -> None:
        config = ConfigService().load_config(config_path)
        if not config.position_path:
            print("checkpointing disabled (no position_path configured)")
            return
        position = CheckpointStore(config.position_path).load()
        print(str(position) if position else "no checkpoint")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='binsync', description='MySQL/MariaDB table replication')
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    for name, help_text in (('run', 'Run initial sync and binlog replication'),
                            ('test', 'Test source and target connections'),
                            ('position', 'Show the saved binlog position')):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument('config', help='Path to configuration file (.json, .yml, .yaml)')
        sub.add_argument('--log-level', default='INFO', help='Logging level')
        sub.add_argument('--log-format', default='json', choices=['json', 'console'], help='Logging format')

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(level=args.log_level, format_type=args.log_format)
    logger = get_logger()
    cli = SyncCLI()

    try:
        if args.command == 'run':
            cli.run_replication(args.config)
        elif args.command == 'test':
            cli.test_connection(args.config)
        elif args.command == 'position':
            cli.show_position(args.config)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    except SyncException as e:
        logger.error("Replication failed", error_type=type(e).__name__, error=str(e))
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
