"""Domain exceptions."""


class SpeechBenchError(Exception):
    """Base class for engine errors."""


class ValidationError(SpeechBenchError):
    """Input rejected before any execution starts."""


class ProviderConfigError(SpeechBenchError):
    """A provider has no usable configuration. Never retried."""

    def __init__(self, provider_id: str, message: str = ""):
        self.provider_id = provider_id
        super().__init__(message or f"Provider {provider_id} has no saved configuration")


class ProviderCallError(SpeechBenchError):
    """A single provider call failed (network, vendor error, bad payload)."""


class JobNotFoundError(SpeechBenchError):
    """Unknown or expired job identifier."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found or expired: {job_id}")
