from .orchestrator import OperationOrchestrator


__all__ = ["OperationOrchestrator"]
