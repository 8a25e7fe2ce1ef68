# Services module
from app.services.workflow_service import WorkflowService
from app.services.inspection_service import InspectionDecisionService
from app.services.frequency_tracker import FrequencyTracker

__all__ = [
    "WorkflowService",
    "InspectionDecisionService",
    "FrequencyTracker",
]
