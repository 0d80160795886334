# orchestrator.py
# Description: In-memory sync task queue and the router that sends each task type
#              (drive, photo, contact, live-photo) through the dispatcher.
#
# Imports
from collections import deque
from typing import Any, Deque, Dict, List, Optional
#
# 3rd-party Libraries
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
#
# Local Imports
from .dispatcher import SyncDispatcher
from .exceptions import SyncError, ValidationError
from .models import SyncOutcome
#
########################################################################################################################
#
# Functions:

TASK_TYPES = ("drive", "photo", "contact", "live-photo")


class SyncTask(BaseModel):
    """One queued unit of work. The credential is never echoed back in reports."""
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    access_token: Optional[str] = Field(None, alias="accessToken", repr=False)

    model_config = ConfigDict(populate_by_name=True)


class SyncQueue:
    """FIFO of pending tasks. Lives only as long as the process."""

    def __init__(self):
        self._queue: Deque[SyncTask] = deque()

    def enqueue(self, task: SyncTask) -> None:
        self._queue.append(task)

    def dequeue(self) -> Optional[SyncTask]:
        return self._queue.popleft() if self._queue else None

    def is_empty(self) -> bool:
        return not self._queue

    def __len__(self) -> int:
        return len(self._queue)


def _require(data: Dict[str, Any], key: str, task_type: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ValidationError(f"'{task_type}' task is missing '{key}'", operation="process_task")
    return value


def _outcome_status(outcome: SyncOutcome) -> str:
    if not outcome.errors and not outcome.metadata_errors:
        return "success"
    if outcome.applied_ids:
        return "partial"
    return "failed"


class SyncOrchestrator:
    """Routes queued tasks to the dispatcher, one credential per task."""

    def __init__(self, dispatcher: SyncDispatcher, queue: Optional[SyncQueue] = None):
        self.dispatcher = dispatcher
        self.queue = queue if queue is not None else SyncQueue()

    def enqueue(self, task: Any) -> SyncTask:
        if not isinstance(task, SyncTask):
            task = SyncTask.model_validate(task)
        self.queue.enqueue(task)
        logger.debug(f"Sync task enqueued: {task.type}")
        return task

    async def process_task(self, task: SyncTask) -> Any:
        """
        Runs one task and returns the dispatcher's result (a SyncOutcome, or
        the upload response for a live photo).

        Raises:
            ValidationError: For an unknown task type or missing task fields.
        """
        dispatcher = self.dispatcher.with_access_token(task.access_token or self.dispatcher.settings.access_token)
        data = task.data

        if task.type == "drive":
            path = str(_require(data, "path", task.type)).lstrip("/")
            record = {"id": path, "content": data.get("content")}
            return await dispatcher.sync(f"webdav/{path}", record, "PUT")
        if task.type == "photo":
            return await dispatcher.sync("photos/upload", data, "POST")
        if task.type == "contact":
            contact_id = _require(data, "id", task.type)
            return await dispatcher.sync(f"contacts/{contact_id}", data, "PUT")
        if task.type == "live-photo":
            return await dispatcher.sync_live_photo(_require(data, "photo", task.type),
                                                    _require(data, "video", task.type))
        raise ValidationError(f"Unknown sync type: {task.type!r}", operation="process_task",
                              context={"supported": ", ".join(TASK_TYPES)})

    async def process_queue(self) -> List[Dict[str, Any]]:
        """
        Drains the queue in order. A failing task is reported and the rest still run.

        Returns:
            One `{task, status, result | error}` entry per task, status being
            "success", "partial" or "failed".
        """
        reports = []
        while not self.queue.is_empty():
            task = self.queue.dequeue()
            task_info = task.model_dump(exclude={"access_token"})
            try:
                result = await self.process_task(task)
            except SyncError as e:
                logger.error(f"Sync task '{task.type}' failed: {e}")
                reports.append({"task": task_info, "status": "failed", "error": e.to_dict()})
                continue

            if isinstance(result, SyncOutcome):
                reports.append({"task": task_info, "status": _outcome_status(result), "result": result.to_dict()})
            else:
                reports.append({"task": task_info, "status": "success", "result": result})

        logger.info(f"Sync queue processed: {len(reports)} task(s)")
        return reports

#
# End of orchestrator.py
########################################################################################################################
