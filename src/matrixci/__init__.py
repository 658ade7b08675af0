from .config import PipelineConfig, load_config, parse_config
from .errors import ConfigurationError, LaunchFailure
from .matrix import expand_matrix
from .model import FailurePolicy, Job, JobStatus, PipelineRun, Step, Verdict
from .orchestrator import PipelineOrchestrator, compute_verdict, run_pipeline

__all__ = [
    "PipelineConfig", "load_config", "parse_config",
    "ConfigurationError", "LaunchFailure",
    "expand_matrix",
    "FailurePolicy", "Job", "JobStatus", "PipelineRun", "Step", "Verdict",
    "PipelineOrchestrator", "compute_verdict", "run_pipeline",
]
