"""Inspection of the Let's Encrypt certificate served for the site."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.x509.oid import NameOID


class TLSInspectionError(RuntimeError):
    """Raised when a certificate cannot be read or parsed."""


@dataclass(frozen=True)
class CertificateSummary:
    """Validity window and names of a PEM certificate."""

    path: Path
    common_name: str | None
    issuer: str
    dns_names: tuple[str, ...]
    not_valid_before: datetime
    not_valid_after: datetime

    def days_remaining(self, now: datetime | None = None) -> int:
        """Return whole days until expiry (negative once expired)."""
        reference = now or datetime.now(UTC)
        return (self.not_valid_after - _as_utc(reference)).days

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True when the certificate is past its ``notAfter`` date."""
        reference = now or datetime.now(UTC)
        return _as_utc(reference) >= self.not_valid_after

    def covers(self, domain: str) -> bool:
        """Return True when *domain* appears in the SAN list or common name."""
        names = {name.lower() for name in self.dns_names}
        if self.common_name:
            names.add(self.common_name.lower())
        return domain.lower() in names

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "path": str(self.path),
            "common_name": self.common_name,
            "issuer": self.issuer,
            "dns_names": list(self.dns_names),
            "not_valid_before": self.not_valid_before.isoformat(),
            "not_valid_after": self.not_valid_after.isoformat(),
        }


def live_certificate_path(live_dir: Path, domain: str) -> Path:
    """Return certbot's ``live/<domain>/cert.pem`` path."""
    return live_dir / domain / "cert.pem"


def inspect_certificate(path: Path) -> CertificateSummary:
    """Load the PEM certificate at *path* and summarise it."""
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise TLSInspectionError(f"Unable to read certificate {path}: {exc}") from exc
    try:
        cert = x509.load_pem_x509_certificate(data)
    except ValueError as exc:
        raise TLSInspectionError(f"Invalid PEM certificate {path}: {exc}") from exc

    not_before_attr = getattr(cert, "not_valid_before_utc", None)
    not_after_attr = getattr(cert, "not_valid_after_utc", None)
    if isinstance(not_before_attr, datetime) and isinstance(not_after_attr, datetime):
        not_before = not_before_attr
        not_after = not_after_attr
    else:  # pragma: no cover - cryptography < 42
        not_before = _as_utc(cert.not_valid_before)
        not_after = _as_utc(cert.not_valid_after)

    return CertificateSummary(
        path=path,
        common_name=_common_name(cert.subject),
        issuer=cert.issuer.rfc4514_string(),
        dns_names=_dns_names(cert),
        not_valid_before=not_before,
        not_valid_after=not_after,
    )


def _common_name(name: x509.Name) -> str | None:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attributes:
        return None
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode("utf-8", errors="replace")


def _dns_names(cert: x509.Certificate) -> tuple[str, ...]:
    try:
        extension = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return ()
    return tuple(extension.value.get_values_for_type(x509.DNSName))


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


__all__ = [
    "CertificateSummary",
    "TLSInspectionError",
    "inspect_certificate",
    "live_certificate_path",
]
