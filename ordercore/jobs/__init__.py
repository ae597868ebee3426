"""Background jobs run by the APScheduler instance in ``ordercore.jobs.scheduler``."""
