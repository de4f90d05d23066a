class InvalidGeometry(ValueError):
    """A parcel geometry is missing, malformed or not a valid polygon."""

    def __init__(self, parcel_id, reason: str):
        super().__init__(f"parcel {parcel_id}: {reason}")
        self.parcel_id = parcel_id
        self.reason = reason


class UnionFailure(RuntimeError):
    """Unioning one member into a combined geometry failed."""

    def __init__(self, parcel_id, reason: str):
        super().__init__(f"union failed for parcel {parcel_id}: {reason}")
        self.parcel_id = parcel_id
        self.reason = reason


class QueryFailure(RuntimeError):
    """A spatial store query or write failed."""
