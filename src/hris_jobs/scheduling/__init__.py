"""Cron scheduling for the job engine."""

from hris_jobs.scheduling.service import CronScheduler, SchedulerStats

__all__ = ["CronScheduler", "SchedulerStats"]
