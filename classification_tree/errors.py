"""
Error taxonomy.

Input errors fail fast before any build work starts and are never retried.
Running out of split candidates or out of time are not errors: they end up
as a ``StopReason`` on a leaf (see ``classification_tree.tree``).
"""


class InputError(ValueError):
    """Invalid caller input. Fix the input and call again."""


class EmptyDataset(InputError):
    pass


class InvalidDepthBound(InputError):
    pass


class InvalidTimeLimit(InputError):
    pass


class InvalidPercentage(InputError):
    pass


class InvalidRegularization(InputError):
    pass


class InconsistentDimensions(InputError):
    """Instances of one FeatureMatrix disagree on shape or contain NaN/Inf."""


class ConfigError(InputError):
    """Experiment configuration or LaTeX table format is malformed."""


class MalformedTree(RuntimeError):
    """A structural invariant of a Tree is broken."""
