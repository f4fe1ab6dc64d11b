"""Error taxonomy shared by the services and the HTTP layer."""


class FinWiseError(ValueError):
    status_code = 400


class InvalidInput(FinWiseError):
    """Missing or malformed fields, unknown enum values."""

    status_code = 400


class NotFound(FinWiseError):
    """Resource is absent or not owned by the caller."""

    status_code = 404


class Forbidden(FinWiseError):
    """Batch authorization failed."""

    status_code = 403
