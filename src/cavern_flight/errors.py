from __future__ import annotations


class CavernFlightError(Exception):
    """Base class for every error raised by cavern_flight."""


class DataFormatError(CavernFlightError, ValueError):
    """A training record line could not be parsed (short line, bad number, bad action)."""

    def __init__(self, message: str, *, line_no: int | None = None, n_fields: int | None = None):
        super().__init__(message)
        self.line_no = line_no
        self.n_fields = n_fields


class EmptyDatasetError(CavernFlightError, ValueError):
    """Loading finished without a single usable (non-STAY) record."""


class ModelNotReadyError(CavernFlightError, RuntimeError):
    """Inference was requested before a model was loaded or trained."""


class PersistenceError(CavernFlightError, OSError):
    """Saving or loading a model artifact failed."""
