"""Task orchestrator for long-running AI generation jobs.

Why not Celery / Dramatiq / Arq?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The hosting platform gives request handlers a short synchronous window and a
longer background window, both far shorter than a full funnel or asset-set
build.  What the engine has to guarantee is not message delivery but:

- Decomposition of one request into tasks that each fit the short window.
- Deterministic category planning and interleaving for weighted asset sets.
- A per-task attempt bound with a configurable backoff schedule, snapshotted
  per job so an administrator edit never changes a job in flight.
- Resume from persisted state alone, never re-running (and re-billing)
  completed work.

SQLite is the single source of truth; every status change is one conditional
UPDATE plus an audit event, so a broker would only add an operational
dependency without removing any of the logic above.
"""
