
class PermeabilityError(Exception):
    """Base class for all simulation and persistence failures."""


class BoundaryConditionError(PermeabilityError):
    """No inlet or no outlet pores could be selected for the flow axis."""


class NumericalError(PermeabilityError):
    """
    Singular system, disconnected network or non-convergence.
    Scoped to a single method: the aggregator disables that method and
    keeps going with the others.
    """
    def __init__(self, message, method=None):
        super().__init__(message)
        self.method = method


class FormatError(PermeabilityError):
    """Magic token mismatch or a header too short to be parsed."""
    def __init__(self, message, recoverable=False):
        super().__init__(message)
        self.recoverable = recoverable


class VersionError(PermeabilityError):
    def __init__(self, version, supported):
        super().__init__(f"Unsupported version: {version} (supported: {', '.join(str(v) for v in supported)})")
        self.version = version
        self.supported = tuple(supported)


class TruncationError(PermeabilityError):
    """End of data reached in the middle of a record."""
    def __init__(self, message, records_read=None, records_expected=None):
        super().__init__(message)
        self.records_read = records_read
        self.records_expected = records_expected


class SimulationCancelled(PermeabilityError):
    pass
