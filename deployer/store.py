"""
Deployment status store.

Tracks the deployment status, per-component statuses and the
operator-facing deployment log.

State is optionally persisted to a JSON file for inspection and
recovery across restarts.

Usage:
    store = DeploymentStore("dep-1", state_file=Path("data/dep-1.json"))

    store.add_component("srv-1", "web-01", "SERVER")
    store.set_status(DeploymentStatus.IN_PROGRESS)
    store.set_component_status("srv-1", ComponentStatus.COMPLETE)
    store.log("info", "Deployment web completed")
"""

import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from deployer.timestamps import isonow

logger = logging.getLogger(__name__)


class DeploymentStatus(str, Enum):
    """Overall deployment status values."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ERROR = "error"


class ComponentStatus(str, Enum):
    """Per-component status values."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class ComponentRecord:
    """Status of one component."""

    component_id: str
    name: str = ""
    type: str = ""
    status: ComponentStatus = ComponentStatus.PENDING
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ComponentRecord":
        data = dict(data)
        data["status"] = ComponentStatus(data["status"])
        return cls(**data)


@dataclass
class LogEntry:
    """One operator-facing deployment log line."""

    level: str
    message: str
    component_id: Optional[str] = None
    timestamp: str = field(default_factory=isonow)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DeploymentStore:
    """
    Thread-safe deployment and component status.

    Pipeline workers update component statuses concurrently, so every
    read and write goes through one lock.
    """

    def __init__(self, deployment_id: str, state_file: Optional[Path] = None):
        self.deployment_id = deployment_id
        self.state_file = Path(state_file) if state_file else None

        self._status = DeploymentStatus.PENDING
        self._components: Dict[str, ComponentRecord] = {}
        self._logs: List[LogEntry] = []
        self._lock = threading.RLock()

        if self.state_file:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            self._load_state()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _load_state(self) -> None:
        """Load state from disk."""
        if not self.state_file.exists():
            logger.info("No existing state file, starting fresh")
            return

        try:
            with open(self.state_file, "r") as f:
                data = json.load(f)

            self._status = DeploymentStatus(data.get("status", DeploymentStatus.PENDING.value))

            for record_data in data.get("components", []):
                try:
                    record = ComponentRecord.from_dict(record_data)
                    self._components[record.component_id] = record
                except Exception as e:
                    logger.warning(f"Failed to load component status: {e}")

            self._logs = [LogEntry(**entry) for entry in data.get("logs", [])]
            logger.info(f"Loaded {len(self._components)} component statuses from state file")

        except json.JSONDecodeError as e:
            logger.error(f"Corrupted state file: {e}")
        except Exception as e:
            logger.error(f"Failed to load state: {e}")

    def _save_state(self) -> None:
        """Persist state to disk."""
        if not self.state_file:
            return

        try:
            temp_file = self.state_file.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(self.to_dict(), f, indent=2)

            temp_file.replace(self.state_file)

        except Exception as e:
            logger.error(f"Failed to save state: {e}")

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "deployment_id": self.deployment_id,
                "updated_at": isonow(),
                "status": self._status.value,
                "components": [r.to_dict() for r in self._components.values()],
                "logs": [entry.to_dict() for entry in self._logs],
            }

    # =========================================================================
    # Deployment Status
    # =========================================================================

    @property
    def status(self) -> DeploymentStatus:
        with self._lock:
            return self._status

    def set_status(self, status: Union[DeploymentStatus, str]) -> None:
        with self._lock:
            self._status = DeploymentStatus(status)
            self._save_state()

    # =========================================================================
    # Component Status
    # =========================================================================

    def add_component(self, component_id: str, name: str = "", component_type: str = "") -> ComponentRecord:
        """Register a component, keeping any existing status."""
        with self._lock:
            record = self._components.get(component_id)
            if record is None:
                record = ComponentRecord(component_id, name, component_type, updated_at=isonow())
                self._components[component_id] = record
                self._save_state()
            return record

    def set_component_status(self, component_id: str, status: Union[ComponentStatus, str]) -> None:
        with self._lock:
            record = self._components.get(component_id)
            if record is None:
                record = ComponentRecord(component_id)
                self._components[component_id] = record

            record.status = ComponentStatus(status)
            record.updated_at = isonow()
            self._save_state()

        logger.debug(f"Component {component_id} is now {record.status.value}", extra={"component_id": component_id})

    def get_component_status(self, component_id: str) -> Optional[ComponentStatus]:
        with self._lock:
            record = self._components.get(component_id)
            return record.status if record else None

    def component_statuses(self) -> Dict[str, ComponentStatus]:
        with self._lock:
            return {cid: r.status for cid, r in self._components.items()}

    def remove_component(self, component_id: str) -> bool:
        with self._lock:
            removed = self._components.pop(component_id, None) is not None
            if removed:
                self._save_state()
            return removed

    # =========================================================================
    # Deployment Log
    # =========================================================================

    def log(self, level: str, message: str, component_id: Optional[str] = None) -> LogEntry:
        entry = LogEntry(level, message, component_id)
        with self._lock:
            self._logs.append(entry)
            self._save_state()
        return entry

    def logs(self, component_id: Optional[str] = None) -> List[LogEntry]:
        with self._lock:
            if component_id is None:
                return list(self._logs)
            return [e for e in self._logs if e.component_id == component_id]
