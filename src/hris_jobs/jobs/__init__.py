"""Business jobs run by the engine. See :mod:`hris_jobs.jobs.catalog` for the registry."""
