"""
--------------------
eventlens.cli.parser
--------------------

Eventlens CLI main :mod:`argparse` parser.
"""
import argparse


def get_parent_parser(name, desc=''):
    """Creates the main (parent) :class:`argparse.ArgumentParser` for the eventlens CLI.

    :param str name: the name of the program.
    :param str desc: program description.

    Returns the configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(prog=name, description=desc)

    parser.add_argument('-v', '--version',
                        help='Print program version and exit', action='store_true')
    parser.add_argument('-c', '--config', dest='config', metavar='FILE', default=None,
                        help='YAML configuration file')
    parser.add_argument('--verbose', dest='verbose', action='store_true',
                        help='Verbose output.')

    return parser


def load_settings(args):
    """Loads the configuration file (if any) and the serializer settings, applying the ``--strict`` flag.

    Returns ``(config, settings)``.
    """
    from eventlens.config import load_config
    from eventlens.serialization import SerializerSettings

    config = load_config(args.config) if args.config else {}
    strict = True if getattr(args, 'strict', False) else None
    return config, SerializerSettings.from_config(config, strict=strict)
