"""
Scheduler package: the monitoring sweeps and the timers that run them.
"""

from .job_scheduler import JOBS, JobState, Scheduler
from .sweeps import MonitoringSweeps

__all__ = ['JOBS', 'JobState', 'MonitoringSweeps', 'Scheduler']
