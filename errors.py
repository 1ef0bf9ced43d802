"""Exception and warning types raised by the sparse AutoRec training stack."""


class AutoRecError(Exception):
    """Base class for every error raised by this package."""


class DataError(AutoRecError, ValueError):
    """
    A rating record cannot be stored in the sparse matrix.
    Raised for malformed triples, out-of-range ratings and duplicate entries.
    """


class ConfigError(AutoRecError, ValueError):
    """A hyperparameter or option is outside its valid range."""


class ShapeMismatchError(AutoRecError, RuntimeError):
    """The network output width does not match the input dimension."""


class DegenerateBatchWarning(UserWarning):
    """A minibatch had no contributing entries and was skipped."""
