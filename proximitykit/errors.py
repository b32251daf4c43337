class CrsMismatchError(ValueError):
  """
  Raised when a cross-layer operation is attempted on layers whose coordinate reference systems differ, or when one
  of the layers has no CRS at all.
  """
  pass


class InvalidGeometryError(ValueError):
  """
  Raised when one or more records cannot be turned into a point geometry because a coordinate is missing, non-finite,
  or outside the valid range of the source CRS.

  :param message: Human readable description.
  :type message: str
  :param keys: Primary keys of the offending records.
  :type keys: list, optional
  """

  def __init__(self, message: str, keys: list = None):
    super().__init__(message)
    self.keys = list(keys) if keys is not None else []


class DegenerateDistanceUnitError(ValueError):
  """
  Raised when a linear distance or buffer is requested in a geographic (degree-based) CRS.
  """
  pass


class JoinAmbiguityWarning(UserWarning):
  """Emitted when a point falls within more than one polygon of the same layer."""
  pass
