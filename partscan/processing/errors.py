"""Error taxonomy for the inference pipeline."""


class PartScanError(Exception):
    """Base class for pipeline errors."""

    pass


class BackendUnavailable(PartScanError):
    """Raised when a backend's credential, binary or engine is missing."""

    pass


class BackendCallFailure(PartScanError):
    """Raised when a process or network call to a backend fails."""

    pass


class OutputValidationFailure(PartScanError):
    """Raised when structured model output cannot be parsed or validated."""

    pass


class ConfigurationError(PartScanError):
    """Raised at construction time for invalid settings."""

    pass
