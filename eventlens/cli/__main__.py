import logging

from eventlens.cli.parser import get_parent_parser
from eventlens.cli.scan import get_parser as get_scan_parser, run_scan
from eventlens.cli.stream import get_parser as get_stream_parser, run_stream
from eventlens.cli.broker import get_parser as get_broker_parser, run_broker

parser = get_parent_parser('eventlens', 'Eventlens CLI')

subparsers = parser.add_subparsers(dest='command', title='command', help='CLI commands')
get_scan_parser(subparsers)
get_stream_parser(subparsers)
get_broker_parser(subparsers)

args = parser.parse_args()

if args.version:
    from eventlens.metadata import version
    from sys import exit
    print('eventlens', version)
    exit(0)

logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                    format='%(asctime)s %(levelname)s [%(name)s] %(message)s')

if args.command == 'scan':
    run_scan(args)
elif args.command == 'stream':
    run_stream(args)
elif args.command == 'broker':
    run_broker(args)
else:
    parser.print_help()
