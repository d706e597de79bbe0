"""
----------------
eventlens.config
----------------

Loading of the hierarchical YAML configuration.

Only the ``eventlens`` section is read. The serializer bindings live under ``eventlens.serialization``:

.. code-block:: yaml

    eventlens:
      partition-capacity: 5000000
      serialization:
        strict: false
        default: json
        bindings:
          "orders\\\\..*": json
        required-manifests:
          - {serializer: 3, manifest: orders.Created}

"""
from logging import getLogger

import yaml

from eventlens.errors import ConfigurationError


log = getLogger(__name__)


def load_config(path):
    """Loads the YAML configuration file.

    :param path: ``str``, path to the configuration file.

    Returns the configuration as a nested ``dict``. An empty file yields an empty ``dict``.
    """
    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError('Cannot read configuration file %s: %s' % (path, e)) from e
    except yaml.YAMLError as e:
        raise ConfigurationError('Invalid configuration file %s: %s' % (path, e)) from e
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError('Configuration root must be a mapping, got %s' % type(config).__name__)
    log.debug('Loaded configuration from %s', path)
    return config


def get_section(config, path, default=None):
    """Walks the dotted ``path`` through the nested configuration.

    :param config: ``dict``, the configuration.
    :param path: ``str``, dotted path, for example ``'eventlens.serialization'``.
    :param default: returned if any key along the path is missing.
    """
    value = config or {}
    for key in path.split('.'):
        if not isinstance(value, dict):
            raise ConfigurationError('Configuration key %s is not a mapping' % path)
        if key not in value or value[key] is None:
            return default
        value = value[key]
    return value
