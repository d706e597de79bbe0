"""
----------------
eventlens.errors
----------------

Exceptions raised while planning, scanning, decoding and streaming journal events.

Infrastructure errors (:class:`PlanningError`, :class:`ScanError`, :class:`CommitLogError`) always abort the job.
Data errors (:class:`DeserializationError`) are isolated per record unless strict mode is requested.
"""


class JournalException(Exception):
    """General eventlens error.
    """
    pass


class PlanningError(JournalException):
    """The stream catalog or the max-sequence probe is unreachable or returned inconsistent metadata.

    Raised before any partition is scanned.
    """
    pass


class ScanError(JournalException):
    """Transient failure while reading a partition from the backing store.

    Scan tasks failing with this error are retried by the execution engine.
    """
    pass


class CorruptRecordError(ScanError):
    """A stored record frame is truncated or malformed.
    """
    pass


class JournalWriteException(JournalException):
    """Represents an error while appending a record to the underlying storage.
    """
    pass


class DeserializationError(JournalException):
    """A record payload could not be decoded.

    :param message: ``str``, the error message.
    :param serializer_id: ``int``, the serializer id of the failed record.
    :param manifest: ``str``, the manifest of the failed record.
    """
    def __init__(self, message, serializer_id=None, manifest=None):
        super(DeserializationError, self).__init__(message)
        self.serializer_id = serializer_id
        self.manifest = manifest


class ConfigurationError(JournalException):
    """Malformed serializer configuration, or a required binding is missing in strict mode.
    """
    pass


class JobCancelledError(JournalException):
    """The job was cancelled before the task could complete.
    """
    pass


class CommitLogError(JournalException):
    """General error of the commit-log (streaming) side.
    """
    pass


class NoOffsetError(CommitLogError):
    """No committed offset exists for the consumer group and the offset reset policy is ``none``.
    """
    pass


class SubscriptionError(CommitLogError):
    """Invalid use of a subscription, for example iterating a closed subscription again.
    """
    pass
