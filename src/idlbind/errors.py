"""Exception base class shared by every pipeline stage."""


class IdlBindError(Exception):
    """Base class for every error that fails a target's build."""

    pass
