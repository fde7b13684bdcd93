"""
Workflow tracking for background trigger and verification runs.

State lives in process memory; the dashboard runs as a single worker next
to the operator's desktop session, so there is nothing to share across
processes.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Any

logger = logging.getLogger(__name__)


class WorkflowTracker:
    """Stores workflow state dicts keyed by workflow id."""

    def __init__(self):
        self._workflows: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def set_workflow(self, workflow_id: str, data: Dict[str, Any]) -> None:
        """
        Store workflow data, replacing any previous entry.

        Args:
            workflow_id: Unique workflow identifier
            data: Workflow metadata dictionary
        """
        with self._lock:
            self._workflows[workflow_id] = dict(data)

    def get_workflow(self, workflow_id: str) -> Optional[Dict[str, Any]]:
        """Return a copy of the workflow data, or None if unknown."""
        with self._lock:
            data = self._workflows.get(workflow_id)
            return dict(data) if data is not None else None

    def update_workflow_fields(self, workflow_id: str, fields: Dict[str, Any]) -> bool:
        """
        Update several fields of an existing workflow.

        Returns:
            True if the workflow exists, False otherwise
        """
        with self._lock:
            if workflow_id not in self._workflows:
                logger.warning(f"Update for unknown workflow {workflow_id}")
                return False
            self._workflows[workflow_id].update(fields)
            return True

    def prune_finished(self, max_age: timedelta, now: Optional[datetime] = None) -> int:
        """
        Drop workflows that completed more than max_age ago.

        Workflows still pending or running are never pruned.

        Args:
            max_age: How long a finished workflow stays visible
            now: Current time (UTC), injectable for tests

        Returns:
            Number of workflows removed
        """
        cutoff = (now or datetime.now(timezone.utc)) - max_age
        with self._lock:
            expired = [
                workflow_id for workflow_id, data in self._workflows.items()
                if data.get('completed_at') and datetime.fromisoformat(data['completed_at']) < cutoff
            ]
            for workflow_id in expired:
                del self._workflows[workflow_id]

        if expired:
            logger.info(f"Pruned {len(expired)} finished workflows")
        return len(expired)


# Global workflow tracker instance
_workflow_tracker: Optional[WorkflowTracker] = None


def get_workflow_tracker() -> WorkflowTracker:
    """
    Get or create global workflow tracker instance.

    Returns:
        WorkflowTracker instance
    """
    global _workflow_tracker

    if _workflow_tracker is None:
        _workflow_tracker = WorkflowTracker()

    return _workflow_tracker
