"""arq worker settings module.

Import path for arq CLI: arq falvia.workers.settings.WorkerSettings
"""

from __future__ import annotations

from falvia.workers.trial_sweeper import TrialSweeperSettings as WorkerSettings

__all__ = ["WorkerSettings"]
