"""Atomizer-specific exceptions."""


class AtomizerError(Exception):
    """Base class for all atomizer errors."""


class AnalysisError(AtomizerError):
    """Raised when the analyzer cannot produce usable facts; halts the pipeline.

    Covers a source with zero detectable functions, an unreadable source, and a
    source path that already holds the generated shim with no backup to read.
    """


class ArtifactError(AtomizerError):
    """Raised when an upstream artifact is missing or does not match its schema."""


class PlanSchemaError(ArtifactError):
    """Raised when a plan document fails validation."""


class LLMError(AtomizerError):
    """Raised when a call to the LLM collaborator fails.

    Never fatal: the planner falls back to the heuristic plan and the linker's
    import validation is skipped.
    """
