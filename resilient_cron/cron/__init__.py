"""Cron scheduling: expression parsing, job records and the in-process scheduler."""

from resilient_cron.cron.command import CommandTask
from resilient_cron.cron.expression import CronExpression
from resilient_cron.cron.job import CronJob
from resilient_cron.cron.scheduler import JobScheduler

__all__ = ["CommandTask", "CronExpression", "CronJob", "JobScheduler"]
