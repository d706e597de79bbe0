"""
-------------------
eventlens.execution
-------------------

Local execution engine.

Runs independent task bodies on a pool of worker threads. The task bodies share no mutable state; each task acquires
its own store session and builds (or reuses) the resolver of its worker thread.

A task that fails with :class:`eventlens.errors.ScanError` is retried a bounded number of times. Any other error,
or the exhaustion of the retries, fails the whole job: the remaining tasks are cancelled and the error is raised to
the caller. Partial results are never returned.
"""
import time
from concurrent.futures import ThreadPoolExecutor, FIRST_EXCEPTION, wait
from logging import getLogger
from threading import Event as ThreadingEvent

from eventlens.errors import ScanError, JobCancelledError


log = getLogger(__name__)


class ExecutionContext:
    """Active execution context for batch jobs and streaming sessions.

    Instances can be used as context managers; the worker pool is shut down on exit.

    :param parallelism: ``int``, number of worker threads.
    :param max_retries: ``int``, how many times a task failing with a ``ScanError`` is retried.
    :param retry_delay: ``float``, seconds to wait before retrying a failed task.
    """

    def __init__(self, parallelism=4, max_retries=3, retry_delay=0.1):
        self.parallelism = parallelism
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.executor = ThreadPoolExecutor(max_workers=parallelism, thread_name_prefix='eventlens-task')
        self._cancelled = ThreadingEvent()

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def cancel(self):
        """Cancels the running job.

        Tasks that have not started are dropped; running tasks finish their current attempt and are not retried.
        """
        log.info('Execution context cancelled')
        self._cancelled.set()

    def check_cancelled(self):
        if self._cancelled.is_set():
            raise JobCancelledError('Job cancelled')

    def submit(self, task, *args):
        """Schedules ``task(*args)`` with the retry policy.

        Returns :class:`concurrent.futures.Future`.
        """
        self.check_cancelled()
        return self.executor.submit(self._run_with_retry, task, args)

    def _run_with_retry(self, task, args):
        attempt = 0
        while True:
            self.check_cancelled()
            try:
                return task(*args)
            except ScanError as e:
                attempt += 1
                if attempt > self.max_retries:
                    log.error('Task %s failed after %d attempts: %s', _task_name(task, args), attempt, e)
                    raise
                log.warning('Task %s failed (attempt %d of %d), retrying: %s',
                            _task_name(task, args), attempt, self.max_retries + 1, e)
                time.sleep(self.retry_delay)

    def run_all(self, task, items):
        """Runs ``task(item)`` for every item and waits for all of them.

        Returns the ``list`` of results in the order of ``items``. If any task fails, the remaining tasks are
        cancelled and the first error is raised.
        """
        futures = [self.submit(task, item) for item in items]
        done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
        for future in futures:
            if future in done and future.exception() is not None:
                for pending in not_done:
                    pending.cancel()
                raise future.exception()
        return [future.result() for future in futures]

    def close(self):
        self.executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _task_name(task, args):
    return '%s%r' % (getattr(task, '__name__', str(task)), args)
