"""Domain-specific errors for printfleet."""


class PrintfleetError(Exception):
    """Base error for printfleet."""


class ConfigError(PrintfleetError):
    """Raised when runtime settings are missing or invalid."""


class ManifestError(PrintfleetError):
    """Raised when a manifest cannot be retrieved or parsed."""


class ManifestValidationError(ManifestError):
    """Raised when one or more manifest records fail validation."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(
            f"Manifest validation failed ({len(errors)} errors): " + "; ".join(errors)
        )


class StoreError(PrintfleetError):
    """Raised for backend problems unrelated to a single probe or mutation."""


class ProbeFailure(PrintfleetError):
    """The print registration store could not be read.

    Distinct from "not found": probes return None for absence.
    """


class MutationFailure(PrintfleetError):
    """An install, remove or configure call reported failure."""

    def __init__(self, operation: str, output: str = ""):
        self.operation = operation
        self.output = output
        detail = f": {output}" if output else ""
        super().__init__(f"{operation} failed{detail}")


class VerificationFailure(PrintfleetError):
    """A post-action re-probe did not observe the expected state."""


class PartialConfigFailure(PrintfleetError):
    """One or more feature/module settings failed while others were attempted."""

    def __init__(self, failed: list[str], attempted: int, first_error: str = ""):
        self.failed = failed
        self.attempted = attempted
        self.first_error = first_error
        super().__init__(
            f"{len(failed)} of {attempted} settings failed; first: {first_error}"
        )
