"""
Error types raised by the hidden-line pipeline.

Construction-time problems (malformed buffers, unusable camera state) are
fatal and surface as subclasses of `HiddenLineError`. Numerical edge cases
inside the geometry stages are never reported through these types; they are
resolved locally as "no intersection" or "no occlusion".
"""

from __future__ import annotations


class HiddenLineError(ValueError):
    """Base class for invalid pipeline input."""


class MalformedMeshError(HiddenLineError):
    """
    Raised when mesh or wireframe buffers cannot describe valid geometry.

    Parameters
    ----------
    field : str
        Name of the offending input buffer (`"positions"`, `"indices"`, ...).
    detail : str
        Human-readable description of the problem.
    """

    def __init__(self, field: str, detail: str):
        self.field = field
        self.detail = detail
        super().__init__(f"{field}: {detail}")


class SceneConfigurationError(HiddenLineError):
    """Raised for a zero-area canvas or a non-invertible camera transform."""
