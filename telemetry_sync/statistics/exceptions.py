"""Statistics generation exceptions."""


class StatisticsError(Exception):
    """Raised when alert statistics cannot be generated or stored.

    The original failure is chained as ``__cause__``.
    """

    pass
