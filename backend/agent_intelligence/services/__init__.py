import agent_intelligence.models  # noqa: F401  (register every mapper before services query)

from agent_intelligence.services.decision_ledger import DecisionLedger
from agent_intelligence.services.version_registry import VersionRegistry
from agent_intelligence.services.approval_workflow import ApprovalWorkflow
from agent_intelligence.services.experiment_engine import ExperimentEngine
from agent_intelligence.services.insight_aggregator import InsightAggregator
from agent_intelligence.services.decision_logger import DecisionLogger

__all__ = [
    'DecisionLedger',
    'VersionRegistry',
    'ApprovalWorkflow',
    'ExperimentEngine',
    'InsightAggregator',
    'DecisionLogger',
]
