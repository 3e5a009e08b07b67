class MSWellError(Exception):
    """Base class for all mswell-related errors."""

    pass


class ValidationError(MSWellError, ValueError):
    """Raised when input data fails validation checks."""

    pass


class InvalidTopologyError(ValidationError):
    """Raised when a segment tree is malformed (unknown outlet, cycle, missing or multiple roots)."""

    pass


class ComputationError(MSWellError):
    """Raised when there is an error during numerical computations."""

    pass


class SingularLocalSystemError(ComputationError):
    """Raised when the well's diagonal block `D` cannot be factorized."""

    pass


class PropertyEvaluationError(ComputationError):
    """Raised when a fluid property cannot be evaluated, e.g. pressure outside table range."""

    pass


class SerializationError(MSWellError):
    """Raised when an object cannot be converted to its plain representation."""

    pass


class DeserializationError(MSWellError):
    """Raised when an object cannot be rebuilt from its plain representation."""

    pass
