from typing import Dict, List, Any, Optional
import structlog

from context_engine.domain.models.context_state import Context
from context_engine.domain.models.memory_state import ActiveProcess, ProcessStatus
from .eviction import BoundedStore, CompletedFirstEviction

logger = structlog.get_logger(__name__)


class WorkingMemory:
    """Current context slot, in-flight processes and scratch data"""

    def __init__(self, capacity: int = 20):
        self.current_context: Optional[Context] = None
        self.processes: BoundedStore[ActiveProcess] = BoundedStore(
            capacity,
            CompletedFirstEviction(is_completed=lambda process: process.status == ProcessStatus.COMPLETED),
        )
        self.temporary_data: Dict[str, Any] = {}

    @property
    def capacity(self) -> int:
        return self.processes.capacity

    def update_context(self, context: Context) -> None:
        """Replace the current context"""
        self.current_context = context

    def add_process(self, process: ActiveProcess) -> List[ActiveProcess]:
        """Track a process; completed ones are purged first when full"""

        # A re-added id replaces the earlier entry
        self.processes.remove(lambda existing: existing.id == process.id)
        evicted = self.processes.add(process)
        if evicted:
            logger.debug("Working memory processes evicted", evicted=[p.id for p in evicted])
        return evicted

    def update_process(self, process_id: str, **changes: Any) -> Optional[ActiveProcess]:
        """Apply validated field updates to a tracked process; raises ValidationError on bad values"""

        process = self.processes.find(lambda existing: existing.id == process_id)
        if process is None:
            return None

        known = {field: value for field, value in changes.items() if field in ActiveProcess.model_fields}
        updated = ActiveProcess.model_validate({**process.model_dump(), **known, "id": process.id})
        self.processes.replace(lambda existing: existing.id == process_id, updated)
        return updated

    def get_process(self, process_id: str) -> Optional[ActiveProcess]:
        return self.processes.find(lambda existing: existing.id == process_id)

    def remove_process(self, process_id: str) -> bool:
        return bool(self.processes.remove(lambda existing: existing.id == process_id))

    def set_temporary_data(self, key: str, value: Any) -> None:
        self.temporary_data[key] = value

    def get_temporary_data(self, key: str) -> Optional[Any]:
        return self.temporary_data.get(key)

    def clear_temporary_data(self) -> None:
        self.temporary_data.clear()

    def clear(self) -> None:
        self.current_context = None
        self.processes.clear()
        self.temporary_data.clear()

    def get_stats(self) -> Dict[str, Any]:
        processes = self.processes.items()
        by_status: Dict[str, int] = {}
        for process in processes:
            by_status[process.status.value] = by_status.get(process.status.value, 0) + 1

        return {
            "has_current_context": self.current_context is not None,
            "process_count": len(processes),
            "capacity": self.capacity,
            "processes_by_status": by_status,
            "temporary_keys": len(self.temporary_data),
        }
