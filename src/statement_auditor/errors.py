class AuditorError(Exception):
    """Base exception for the statement auditor."""
    pass


class ConfigurationError(AuditorError):
    """Raised when detection thresholds or analysis options are invalid."""

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        details = "; ".join(f"{key}: {message}" for key, message in self.errors.items())
        super().__init__(f"Invalid configuration: {details}")


class AnalysisFailedError(AuditorError):
    """Raised when an analysis run ends in the FAILED state."""

    def __init__(self, run_id: str, message: str):
        self.run_id = run_id
        self.message = message
        super().__init__(f"Analysis {run_id} failed: {message}")


class AnalysisCancelled(AuditorError):
    """Raised internally when cancellation is requested between stages."""
    pass


class ReviewError(AuditorError):
    """Raised when the AI reviewer cannot produce annotations."""
    pass
