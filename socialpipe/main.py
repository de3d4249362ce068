#!/usr/bin/env python3
"""
Command-line entry point.

Usage:
    # Run consumer workers until interrupted
    socialpipe --config config.yaml consume
    
    # Inspect dead-lettered events of a durable log
    socialpipe dead-letters --data-dir ./data --topic notification.send
    
    # Show declared topics
    socialpipe topics
"""

import argparse
import json
import signal
import sys
import threading

from socialpipe.app import Application
from socialpipe.consumer.dead_letter import DeadLetterSink
from socialpipe.eventlog.log import EventLog
from socialpipe.events.topics import TopicRegistry
from socialpipe.utils.config import Config
from socialpipe.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

RETENTION_INTERVAL_SECONDS = 60.0


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description='socialpipe - event-driven interaction pipeline'
    )
    
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='YAML configuration file merged over the defaults'
    )
    
    parser.add_argument(
        '--log-level',
        type=str,
        default=None,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (default: from config)'
    )
    
    parser.add_argument(
        '--log-format',
        type=str,
        default=None,
        choices=['json', 'console'],
        help='Log output format (default: from config)'
    )
    
    subparsers = parser.add_subparsers(dest='command', required=True)
    
    subparsers.add_parser('consume', help='Run consumer workers until interrupted')
    
    dead_letters = subparsers.add_parser('dead-letters', help='Print dead-letter records as JSON lines')
    dead_letters.add_argument(
        '--data-dir',
        type=str,
        default=None,
        help='Event log directory (default: eventlog.data_dir)'
    )
    dead_letters.add_argument(
        '--topic',
        type=str,
        default=None,
        help='Only records that failed on this topic'
    )
    
    subparsers.add_parser('topics', help='List declared topics')
    
    return parser.parse_args(argv)


def load_config(args) -> Config:
    config = Config(args.config)
    if args.log_level:
        config.set('logging.level', args.log_level)
    if args.log_format:
        config.set('logging.format', args.log_format)
    return config


def run_consume(config: Config) -> int:
    # A private store would ack every notification as "receiver missing"
    if not config.get('store.factory'):
        logger.error(
            "Consume needs the writers' store of record, set store.factory",
            data_dir=config.get('eventlog.data_dir'),
        )
        return 2
    
    stop = threading.Event()
    
    def request_stop(signum, frame):
        logger.info("Received signal, stopping", signal=signum)
        stop.set()
    
    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, request_stop)
    
    app = Application(config)
    
    try:
        app.start()
        logger.info("Consumers running", subscriptions=len(app.router.subscriptions))
        
        while not stop.wait(RETENTION_INTERVAL_SECONDS):
            app.event_log.apply_retention()
    
    except Exception as e:
        logger.error("Consumer error", error=str(e), exc_info=True)
        return 1
    
    finally:
        app.stop()
    
    return 0


def run_dead_letters(config: Config, data_dir, topic, out=None) -> int:
    out = out or sys.stdout
    directory = data_dir or config.get('eventlog.data_dir')
    if not directory:
        logger.error("Dead-letter inspection needs a durable log directory")
        return 2
    
    registry = TopicRegistry.from_config(config.get('topics'))
    
    with EventLog(registry, data_dir=directory) as event_log:
        for record in DeadLetterSink(event_log).read_all(original_topic=topic):
            out.write(json.dumps(record.to_dict()) + "\n")
    
    return 0


def run_topics(config: Config, out=None) -> int:
    out = out or sys.stdout
    registry = TopicRegistry.from_config(config.get('topics'))
    for name in registry.list_topics():
        out.write(json.dumps(registry.get(name).to_dict()) + "\n")
    return 0


def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    config = load_config(args)
    
    configure_logging(
        log_level=config.get('logging.level', 'INFO'),
        log_format=config.get('logging.format', 'json'),
        log_output='stderr',
    )
    
    if args.command == 'consume':
        return run_consume(config)
    if args.command == 'dead-letters':
        return run_dead_letters(config, args.data_dir, args.topic)
    if args.command == 'topics':
        return run_topics(config)
    
    return 2


if __name__ == '__main__':
    sys.exit(main())
