"""arq worker settings module.

Import path for arq CLI: arq learnxp.workers.settings.WorkerSettings
"""

from __future__ import annotations

from learnxp.workers.sync_worker import SyncWorkerSettings as WorkerSettings

__all__ = ["WorkerSettings"]
