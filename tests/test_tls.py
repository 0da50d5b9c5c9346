"""Unit tests for certificate inspection."""
from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from conftest import write_certificate

from wpdeployctl.tls import TLSInspectionError, inspect_certificate, live_certificate_path


def test_live_certificate_path(tmp_path: Path) -> None:
    """Certbot keeps the leaf certificate under ``live/<domain>/cert.pem``."""
    assert live_certificate_path(tmp_path, "shop.docpilot.in") == (
        tmp_path / "shop.docpilot.in" / "cert.pem"
    )


def test_inspect_certificate_summarises_validity(tmp_path: Path) -> None:
    """Names and validity window are extracted from the PEM file."""
    path = write_certificate(tmp_path / "cert.pem", "shop.docpilot.in", valid_days=45)

    summary = inspect_certificate(path)

    assert summary.common_name == "shop.docpilot.in"
    assert summary.dns_names == ("shop.docpilot.in",)
    assert summary.covers("SHOP.docpilot.in")
    assert not summary.covers("other.example")
    assert summary.not_valid_after.tzinfo is not None
    assert 43 <= summary.days_remaining() <= 45
    assert summary.is_expired() is False
    later = datetime.now(UTC) + timedelta(days=50)
    assert summary.is_expired(later) is True
    assert summary.to_dict()["path"] == str(path)


def test_naive_reference_time_treated_as_utc(tmp_path: Path) -> None:
    """Naive datetimes compare as UTC."""
    summary = inspect_certificate(write_certificate(tmp_path / "cert.pem", valid_days=10))

    naive_later = datetime.now(UTC).replace(tzinfo=None) + timedelta(days=20)

    assert summary.is_expired(naive_later) is True


def test_missing_certificate(tmp_path: Path) -> None:
    """Unreadable certificates raise ``TLSInspectionError``."""
    with pytest.raises(TLSInspectionError):
        inspect_certificate(tmp_path / "absent.pem")


def test_invalid_pem(tmp_path: Path) -> None:
    """Garbage input raises ``TLSInspectionError``."""
    path = tmp_path / "cert.pem"
    path.write_text("not a certificate", encoding="utf-8")

    with pytest.raises(TLSInspectionError):
        inspect_certificate(path)
