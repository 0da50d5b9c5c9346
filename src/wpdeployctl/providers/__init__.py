"""Provider interfaces for wpdeployctl."""
from __future__ import annotations

from .certbot import CertbotError, CertbotProvider
from .commands import CommandError
from .compose import ComposeError, ComposeProvider, VolumeMount
from .database import MySQLClient
from .nginx import NginxError, NginxProvider

__all__ = [
    "CertbotError",
    "CertbotProvider",
    "CommandError",
    "ComposeError",
    "ComposeProvider",
    "MySQLClient",
    "NginxError",
    "NginxProvider",
    "VolumeMount",
]
