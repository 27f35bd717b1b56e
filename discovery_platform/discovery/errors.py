class DiscoveryError(Exception):
    """Base for errors surfaced to the caller as a rejected operation."""
    status_code = 400


class NotFound(DiscoveryError):
    """The grid/cell/cluster id no longer exists."""
    status_code = 404


class InvalidTransition(DiscoveryError):
    """
    The operation is not allowed in the record's current state
    (subdivide at max depth, undivide a root, search a cell twice...).
    Raised before anything is written.
    """
    status_code = 409


class UpstreamFailure(DiscoveryError):
    """The place-search source failed; the caller should retry."""
    status_code = 502
