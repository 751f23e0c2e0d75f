"""
PanoSearch Exception Hierarchy

Structured exceptions for the extraction, indexing, triggering and storage
stages.  Internal stages raise these; the public facade
(:class:`panosearch.TourSearch`) catches them at its boundary and turns them
into a log line plus a safe fallback value, so embedding hosts never see
them unless they call an explicitly raising helper.

Usage::

    from panosearch.exceptions import PanoSearchError, SceneLoadError

    try:
        tour = load_scene("scene.json")
    except SceneLoadError as exc:
        print(f"Cannot read scene: {exc}")
"""


class PanoSearchError(Exception):
    """Base exception for all PanoSearch errors."""


class ConfigValidationError(PanoSearchError, ValueError):
    """Configuration failed validation.

    Validation is advisory: this is only raised by
    :meth:`ValidationReport.raise_if_invalid` and when a settings file
    cannot be read (:func:`read_config_file`).  Inherits from ``ValueError``
    so callers that already catch ``ValueError`` keep working.
    """

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid configuration")


class ExtractionError(PanoSearchError):
    """A single playlist item or overlay could not be read from the host."""


class IndexBuildError(PanoSearchError):
    """The search index could not be built at all (e.g. no playlist)."""


class ElementLookupError(PanoSearchError, LookupError):
    """A scene element could not be located by id."""


class ElementTriggerError(PanoSearchError):
    """A scene element was found but none of its trigger methods worked."""


class StorageError(PanoSearchError):
    """Persistent storage failed."""


class StorageUnavailableError(StorageError):
    """Persistent storage is not usable (read-only, disabled, missing)."""


class StorageQuotaExceeded(StorageError):
    """A storage write would exceed the configured quota."""


class SceneLoadError(PanoSearchError, ValueError):
    """A JSON scene export is missing or malformed."""
