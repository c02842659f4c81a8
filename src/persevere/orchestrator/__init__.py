"""Job orchestration: the agent loop and its collaborators."""

from persevere.orchestrator.dispatcher import JobDispatcher, JobWorker, WorkerRunSummary
from persevere.orchestrator.intake import TranscriptIntake
from persevere.orchestrator.runner import Deadline, JobOrchestrator, JobRunResult

__all__ = [
    "Deadline",
    "JobDispatcher",
    "JobOrchestrator",
    "JobRunResult",
    "JobWorker",
    "TranscriptIntake",
    "WorkerRunSummary",
]
