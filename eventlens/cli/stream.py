"""
--------------------
eventlens.cli.stream
--------------------

Streaming of newly appended events from the command line.
"""
import signal
from logging import getLogger

from eventlens.cli.parser import load_settings
from eventlens.commitlog import ConsumerSettings, OFFSET_RESET_POLICIES
from eventlens.execution import ExecutionContext
from eventlens.stream import event_stream


log = getLogger(__name__)


def get_parser(subparsers):
    """Configures the subparser for the ``stream`` command.

    :param argparse.ArgumentParser subparser: subparser for commands.

    Returns :class:`argparse.ArgumentParser` configured for the ``stream`` command.
    """
    parser = subparsers.add_parser('stream', help='Stream newly appended events')

    parser.add_argument('-b', '--bootstrap', dest='bootstrap', default='localhost:6434',
                        help='Broker address (host:port)')
    parser.add_argument('-t', '--topic', nargs='+', dest='topics', metavar='TOPIC[:PARALLELISM]', required=True,
                        help='Topics to subscribe to, with optional parallelism')
    parser.add_argument('-g', '--group', dest='group_id', required=True, help='Consumer group id')
    parser.add_argument('-r', '--offset-reset', dest='offset_reset', default='latest',
                        choices=OFFSET_RESET_POLICIES,
                        help='Where to start when the group has no committed offset')
    parser.add_argument('--no-auto-commit', dest='auto_commit', action='store_false',
                        help='Commit offsets after each printed batch instead of letting the broker commit.')
    parser.add_argument('--strict', dest='strict', action='store_true',
                        help='Abort on the first record that cannot be decoded.')

    return parser


def parse_topics(values):
    """Parses ``name[:parallelism]`` values into a topic to parallelism ``dict``.
    """
    topics = {}
    for value in values:
        name, _, parallelism = value.partition(':')
        topics[name] = int(parallelism) if parallelism else 1
    return topics


def run_stream(args, out=print):
    """Subscribes and prints events until interrupted.

    :param argparse.Namespace args: the parsed arguments.
    :param function out: output function, ``print`` by default.
    """
    _, settings = load_settings(args)
    consumer = ConsumerSettings(group_id=args.group_id, offset_reset=args.offset_reset,
                                endpoints={'bootstrap.servers': args.bootstrap}, auto_commit=args.auto_commit)

    with ExecutionContext(parallelism=sum(parse_topics(args.topics).values())) as context:
        subscription = event_stream(context, consumer, parse_topics(args.topics), settings=settings)

        def stop_stream(sig, frame):
            """Signal handler that cancels the subscription.
            """
            log.info('Stream is shutting down.')
            subscription.cancel()

        signal.signal(signal.SIGINT, stop_stream)
        signal.signal(signal.SIGTERM, stop_stream)

        def print_batch(batch):
            for stream_id, sequence_nr, event in batch:
                out('%s #%d: %r' % (stream_id, sequence_nr, event.data))
            if not args.auto_commit:
                batch.commit()

        subscription.foreach_batch(print_batch)
