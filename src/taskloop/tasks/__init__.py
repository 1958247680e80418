"""
Task subsystem.

Components:
- task_models.py: enums, errors and duration / time-of-day helpers
- task_entry.py: one task's configuration, run state, timer and run procedure
- task_registry.py: name -> entry registry, control surface and log sinks
- task_runner.py: event loop in a background thread for synchronous hosts
- task_api.py: small high-level helpers (every, daily_at, run_once, describe)
"""
