import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Topology = Literal["mesh", "hierarchical", "ring", "star"]
QueenMode = Literal["centralized", "distributed"]
SwarmStatus = Literal["active", "paused", "archived"]

AgentType = Literal[
    "coordinator", "researcher", "coder", "analyst", "architect", "tester",
    "reviewer", "optimizer", "documenter", "monitor", "specialist",
]
AgentStatus = Literal["idle", "busy", "active", "error", "offline"]

TaskStatus = Literal["pending", "assigned", "in_progress", "completed", "failed", "cancelled"]
TaskPriority = Literal["critical", "high", "medium", "low"]

BroadcastScope = Literal["swarm", "global", "none"]
MessagePriority = Literal["urgent", "high", "medium", "low"]

ConsensusStatus = Literal["pending", "achieved", "failed", "timeout"]

TERMINAL_TASK_STATUSES = frozenset({"completed", "failed", "cancelled"})
TERMINAL_CONSENSUS_STATUSES = frozenset({"achieved", "failed", "timeout"})

# Rank 1 dispatches first
TASK_PRIORITY_RANK = {"critical": 1, "high": 2, "medium": 3, "low": 4}
MESSAGE_PRIORITY_RANK = {"urgent": 1, "high": 2, "medium": 3, "low": 4}


def _decode_json(value: Any) -> Any:
    """Decode a JSON column; non-JSON text is returned as-is."""
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


class Swarm(BaseModel):
    """
    A named group of agents sharing a topology and consensus threshold.
    """
    id: str
    name: str
    topology: Topology
    queen_mode: QueenMode = "centralized"
    max_agents: int = 8
    consensus_threshold: float = Field(default=0.66, ge=0.0, le=1.0)
    memory_ttl: Optional[int] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    is_active: bool = False
    status: SwarmStatus = "active"
    # Only populated by list_swarms
    agent_count: Optional[int] = None

    @field_validator("config", mode="before")
    @classmethod
    def _decode_config(cls, value):
        value = _decode_json(value)
        return value if value is not None else {}


class Agent(BaseModel):
    """
    A worker unit with a role, status and task-execution counters.
    """
    id: str
    swarm_id: str
    name: str
    type: AgentType
    status: AgentStatus = "idle"
    capabilities: List[str] = Field(default_factory=list)
    current_task_id: Optional[str] = None
    message_count: int = 0
    error_count: int = 0
    success_count: int = 0
    created_at: datetime
    last_active_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("capabilities", "metadata", mode="before")
    @classmethod
    def _decode(cls, value, info):
        value = _decode_json(value)
        if value is None:
            return [] if info.field_name == "capabilities" else {}
        return value


class AgentPerformance(BaseModel):
    """Execution counters plus task-derived figures for one agent."""
    agent_id: str
    success_count: int
    error_count: int
    completed_tasks: int
    failed_tasks: int
    avg_completion_time: Optional[float] = None

    @property
    def success_rate(self) -> float:
        total = self.success_count + self.error_count
        return self.success_count / total if total else 0.0


class Task(BaseModel):
    """
    A unit of work with priority, dependencies and assignment state.
    """
    id: str
    swarm_id: str
    type: str = "general"
    description: str
    status: TaskStatus = "pending"
    priority: TaskPriority = "medium"
    assigned_agent_id: Optional[str] = None
    dependencies: List[str] = Field(default_factory=list)
    requirements: Optional[Any] = None
    result: Optional[Any] = None
    created_at: datetime
    assigned_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_duration: Optional[float] = None
    actual_duration: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    # Only populated by list_active_tasks
    agent_name: Optional[str] = None

    @field_validator("dependencies", "metadata", "requirements", "result", mode="before")
    @classmethod
    def _decode(cls, value, info):
        value = _decode_json(value)
        if value is None:
            if info.field_name == "dependencies":
                return []
            if info.field_name == "metadata":
                return {}
        return value


class MemoryEntry(BaseModel):
    """
    A namespaced cache entry. The value is an opaque serialized payload.
    """
    key: str
    namespace: str = "default"
    value: str
    access_count: int = 0
    last_accessed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)
    ttl: Optional[int] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _decode_metadata(cls, value):
        value = _decode_json(value)
        return value if value is not None else {}


class MemoryStats(BaseModel):
    total_entries: int = 0
    total_size: int = 0
    namespace_count: int = 0


class NamespaceStats(BaseModel):
    namespace: str
    entry_count: int = 0
    total_size: int = 0
    avg_access_count: Optional[float] = None
    avg_ttl: Optional[float] = None
    last_accessed: Optional[datetime] = None


class Communication(BaseModel):
    """
    An inter-agent message. A missing recipient means broadcast.
    """
    id: str
    swarm_id: str
    from_agent_id: str
    to_agent_id: Optional[str] = None
    message_type: str = "direct"
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    broadcast_scope: BroadcastScope = "none"
    priority: MessagePriority = "medium"
    created_at: datetime
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    requires_response: bool = False
    parent_message_id: Optional[str] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _decode_metadata(cls, value):
        value = _decode_json(value)
        return value if value is not None else {}

    @property
    def is_broadcast(self) -> bool:
        return self.to_agent_id is None


class MessageReceipt(BaseModel):
    """Delivery state of one broadcast for one recipient."""
    message_id: str
    agent_id: str
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None


class ConsensusProposal(BaseModel):
    """
    A quorum proposal. votes_total always equals votes_for + votes_against.
    """
    id: str
    swarm_id: str
    proposal_type: str = "general"
    proposal_data: Optional[Any] = None
    proposed_by: Optional[str] = None
    threshold_required: float = Field(ge=0.0, le=1.0)
    votes_for: int = 0
    votes_against: int = 0
    votes_total: int = 0
    status: ConsensusStatus = "pending"
    created_at: datetime
    resolved_at: Optional[datetime] = None
    timeout_at: Optional[datetime] = None

    @field_validator("proposal_data", mode="before")
    @classmethod
    def _decode_data(cls, value):
        return _decode_json(value)

    @property
    def approval_ratio(self) -> float:
        return self.votes_for / self.votes_total if self.votes_total else 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CONSENSUS_STATUSES


class ConsensusVote(BaseModel):
    proposal_id: str
    agent_id: str
    vote: bool
    reason: Optional[str] = None
    created_at: datetime


class SwarmStats(BaseModel):
    total_agents: int = 0
    active_agents: int = 0
    busy_agents: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    task_backlog: int = 0
    communication_volume: int = 0

    @property
    def agent_utilization(self) -> float:
        return self.busy_agents / self.total_agents if self.total_agents else 0.0


class StrategyPerformance(BaseModel):
    strategy: str
    success_rate: Optional[float] = None
    avg_completion_time: Optional[float] = None
    total_tasks: int = 0
    recent_performance: Optional[float] = None


class HealthReport(BaseModel):
    healthy: bool
    timestamp: datetime
    tables: Dict[str, int] = Field(default_factory=dict)
    message: str
