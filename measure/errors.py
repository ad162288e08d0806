"""Exception hierarchy shared by the measurement and exposition layers."""


class ExporterError(Exception):
    """Base class for every error raised on purpose by this project."""


class ConfigError(ExporterError):
    """Invalid configuration: detected before any measurement starts."""


class MeasurementError(ExporterError):
    """A measurement produced nothing usable for one direction or target."""


class NoDataError(MeasurementError):
    """The aggregator was asked for a result without any admitted sample."""

    def __init__(self, message: str = "no transfer samples were collected") -> None:
        super().__init__(message)
