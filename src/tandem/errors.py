class TandemError(Exception):
    """Base class for errors raised while decoding and aligning a session."""


class ConfigError(TandemError):
    """The code registry or configuration is invalid, so no session can run."""


class IntegrityError(TandemError):
    """A hardware event log is malformed, for example trial begin and end counts disagree."""


class AlignmentFailure(TandemError):
    """No anchor trial could be found to bootstrap hardware / control trial matching."""


class DriftFitUnreliable(TandemError):
    """A clock drift fit had too few reference points, or residuals above tolerance.

    This is a warning-level condition: sessions carry it as a reason, it should not stop a batch.
    """
