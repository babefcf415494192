"""arq worker settings module.

Import path for arq CLI: arq mindcase.workers.settings.WorkerSettings
"""

from __future__ import annotations

from mindcase.workers.maintenance import WorkerSettings

__all__ = ["WorkerSettings"]
