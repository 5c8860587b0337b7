"""Health subsystem — samplers, evaluator, scheduler, report aggregation."""

from .engine import CheckResult, HealthReport, MetricSample, Policy, Status, Threshold, evaluate
from .errors import NotificationUnavailable, SetupError, SourceUnavailable
from .report import AlertAggregator, ReportLog, aggregate
from .samplers import Sampler
from .scheduler import HealthScheduler, RetryPolicy
