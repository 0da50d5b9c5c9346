"""wpdeployctl: deploy and operate a Docker Compose WordPress site."""
from __future__ import annotations

__all__ = ["__version__"]

# NOTE: The version is duplicated in ``pyproject.toml``.
__version__ = "0.1.0"
