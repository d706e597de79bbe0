"""
--------------------
eventlens.cli.broker
--------------------

Commit-log broker command line interface.
"""
import signal
from logging import getLogger

from eventlens.broker import Broker


log = getLogger(__name__)


def get_parser(subparsers):
    """Configures the subparser for the ``broker`` command.

    :param argparse.ArgumentParser subparser: subparser for commands.

    Returns :class:`argparse.ArgumentParser` configured for the ``broker`` command.
    """
    parser = subparsers.add_parser('broker', help='Commit-log broker server')

    parser.add_argument('-H', '--host', dest='server_host', default='localhost', help='Hostname to bind to')
    parser.add_argument('-P', '--port', dest='port', default=6434, type=int, help='Listen on port')
    parser.add_argument('--partitions', dest='partitions', default=1, type=int,
                        help='Number of partitions of new topics')

    return parser


def run_broker(args):
    """Runs the broker until it receives a termination signal.

    :param argparse.Namespace args: arguments to configure the :class:`eventlens.broker.Broker`.
    """
    broker = Broker(host=args.server_host, port=args.port, partitions=args.partitions)

    def stop_broker(sig, frame):
        """Signal handler that stops the broker.
        """
        log.info('Broker is shutting down.')
        broker.stop()

    signal.signal(signal.SIGHUP, stop_broker)
    signal.signal(signal.SIGINT, stop_broker)
    signal.signal(signal.SIGTERM, stop_broker)

    broker.run()
