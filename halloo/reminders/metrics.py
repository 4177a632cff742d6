from prometheus_client import Counter, Gauge


scheduler_scans_total = Counter(
    "reminder_scheduler_scans_total",
    "Total due-job scan cycles",
)

reminders_dispatch_success_total = Counter(
    "reminders_dispatch_success_total",
    "Total reminders accepted by the SMS gateway",
)

reminders_dispatch_failed_total = Counter(
    "reminders_dispatch_failed_total",
    "Total reminders the SMS gateway rejected",
)

reminders_dispatch_skipped_total = Counter(
    "reminders_dispatch_skipped_total",
    "Reminders skipped before sending",
    ["reason"],
)

reminder_lateness_seconds = Gauge(
    "reminder_last_lateness_seconds",
    "Lateness of the most recently dispatched reminder",
)

schedule_advance_failures_total = Counter(
    "reminder_schedule_advance_failures_total",
    "Schedule advances that exhausted their retries",
)

recovery_sweeps_total = Counter(
    "reminder_recovery_sweeps_total",
    "Total missed-job recovery sweeps",
)

recovered_schedules_total = Counter(
    "reminder_recovered_schedules_total",
    "Stuck schedules fast-forwarded by recovery",
)

correctness_violations_total = Counter(
    "reminder_correctness_violations_total",
    "Schedules found stuck after a recorded delivery attempt",
)

health_stuck_schedules = Gauge(
    "reminder_health_stuck_schedules",
    "Active recurring schedules more than an hour behind",
)

health_recent_errors = Gauge(
    "reminder_health_recent_errors",
    "Scheduler errors recorded in the trailing window",
)

health_delivery_success_rate = Gauge(
    "reminder_health_delivery_success_rate_percent",
    "Delivery success rate over the trailing hour",
)

health_status_level = Gauge(
    "reminder_health_status_level",
    "0 = healthy, 1 = warning, 2 = critical",
)
