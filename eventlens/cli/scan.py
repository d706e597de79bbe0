"""
------------------
eventlens.cli.scan
------------------

Batch scan of a journal from the command line.
"""
from logging import getLogger

from eventlens.cli.parser import load_settings
from eventlens.config import get_section
from eventlens.errors import ConfigurationError
from eventlens.dataset import events_dataset
from eventlens.execution import ExecutionContext
from eventlens.model import DecodeFailure
from eventlens.planner import DEFAULT_PARTITION_CAPACITY


log = getLogger(__name__)


def get_parser(subparsers):
    """Configures the subparser for the ``scan`` command.

    :param argparse.ArgumentParser subparser: subparser for commands.

    Returns :class:`argparse.ArgumentParser` configured for the ``scan`` command.
    """
    parser = subparsers.add_parser('scan', help='Scan the whole journal')

    parser.add_argument('-d', '--data-dir', dest='data_dir', help='Naive journal root directory')
    parser.add_argument('-U', '--db-url', dest='db_url', default=None,
                        help='Journal database URL (SQLAlchemy form). Used instead of --data-dir.')
    parser.add_argument('-s', '--stream', nargs='*', dest='stream_ids', metavar='STREAM_ID',
                        help='Scan only these stream ids. Default is all streams in the journal.')
    parser.add_argument('--capacity', dest='capacity', type=int, default=None,
                        help='Partition capacity the journal was written with. Default is %d.' %
                        DEFAULT_PARTITION_CAPACITY)
    parser.add_argument('-p', '--parallelism', dest='parallelism', type=int, default=4,
                        help='Number of parallel scan tasks.')
    parser.add_argument('--retries', dest='retries', type=int, default=3,
                        help='Retries of a failed partition scan.')
    parser.add_argument('--strict', dest='strict', action='store_true',
                        help='Abort on the first record that cannot be decoded.')
    parser.add_argument('--sort', dest='sort', action='store_true',
                        help='Print the events ordered by stream, partition and sequence number.')

    return parser


def get_store(args):
    """Opens the journal store selected by the arguments.
    """
    if args.db_url:
        from eventlens.rdbs import create_store
        return create_store(db_url=args.db_url, verbose=args.verbose)
    if not args.data_dir:
        raise ConfigurationError('No journal specified. Use --data-dir or --db-url.')
    from eventlens.naivestore import NaiveJournalStore
    return NaiveJournalStore(root_dir=args.data_dir)


def format_pair(key, value):
    if isinstance(value, DecodeFailure):
        return '%s/%d #%d FAILED [%s]: %s' % (key.stream_id, key.partition_index, key.sequence_nr,
                                             value.manifest, value.error)
    return '%s/%d #%d: %r' % (key.stream_id, key.partition_index, key.sequence_nr, value.data)


def run_scan(args, out=print):
    """Runs the scan and prints every event.

    :param argparse.Namespace args: the parsed arguments.
    :param function out: output function, ``print`` by default.
    """
    config, settings = load_settings(args)
    capacity = args.capacity or get_section(config, 'eventlens.partition-capacity', DEFAULT_PARTITION_CAPACITY)
    store = get_store(args)
    try:
        with ExecutionContext(parallelism=args.parallelism, max_retries=args.retries) as context:
            dataset = events_dataset(context, store, stream_ids=args.stream_ids, settings=settings,
                                     capacity=capacity).persist()
            pairs = dataset.sorted() if args.sort else dataset.collect()
            failed = 0
            for key, value in pairs:
                if isinstance(value, DecodeFailure):
                    failed += 1
                out(format_pair(key, value))
            out('%d events, %d failed, %d partitions' % (len(pairs) - failed, failed, len(dataset.ranges)))
    finally:
        store.close()
