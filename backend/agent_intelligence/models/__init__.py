# backend/agent_intelligence/models/__init__.py
from agent_intelligence.models.decision import Decision, DecisionOutcome
from agent_intelligence.models.prompt_version import PromptVersion
from agent_intelligence.models.experiment import PromptExperiment
from agent_intelligence.models.learning import LearningInsight, PerformanceSnapshot
from agent_intelligence.models.approval import ApprovalRequest, ReviewTask

__all__ = [
    'Decision',
    'DecisionOutcome',
    'PromptVersion',
    'PromptExperiment',
    'LearningInsight',
    'PerformanceSnapshot',
    'ApprovalRequest',
    'ReviewTask',
]
