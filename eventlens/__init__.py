"""
---------
eventlens
---------

Analytic access to event-sourced journals: a parallel scan over the whole
historical log and a continuous stream over newly appended events.
"""
from eventlens.metadata import version

__version__ = version
