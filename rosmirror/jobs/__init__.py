"""
Jobs package - background update checks
"""
from rosmirror.jobs.scheduler import JobScheduler

__all__ = ['JobScheduler']
