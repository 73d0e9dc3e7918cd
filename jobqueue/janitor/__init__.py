"""
Janitor for deleting old terminal jobs.
"""

from jobqueue.janitor.main import Janitor, run

__all__ = ["Janitor", "run"]
