class YieldTuneError(Exception):
    """Base class for run-level failures."""


class SchemaError(YieldTuneError):
    """Input table does not carry the configured columns."""


class SplitError(YieldTuneError):
    pass


class RecipeNotFittedError(YieldTuneError):
    pass


class UnseenCategoryError(YieldTuneError):
    """A categorical level was met at apply-time that the fitted vocabulary does not know."""

    def __init__(self, column, levels):
        self.column = column
        self.levels = sorted(str(v) for v in levels)
        super().__init__(
            f"Column '{column}' has levels not seen during fit: {self.levels}. "
            f"Use unseen_policy='bucket' to map them to a reserved level."
        )


class TuningError(YieldTuneError):
    """The search produced no usable configuration."""


class EmptyCandidateSetError(YieldTuneError):
    pass
