"""Local certificate authority and registry server certificate issuance.

The CA is created once and reused on later runs; the registry's server key,
signing request and certificate are regenerated on every issuance. All key
material is produced in memory with ``cryptography`` before anything touches
the disk, and each file is replaced atomically, so a failed run leaves the
previous files intact rather than half-written.
"""
from __future__ import annotations

import ipaddress
import os
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import cast

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .config import CertificateConfig
from .files import atomic_write_bytes
from .templates import TemplateEngine

CA_CERT_NAME = "ca.crt"
CA_KEY_NAME = "ca.key"
SERVER_CERT_NAME = "domain.crt"
SERVER_KEY_NAME = "domain.key"
SERVER_CSR_NAME = "domain.csr"
SAN_CONFIG_NAME = "san.cnf"

# X.520 upper bound for commonName; clients match on the SAN instead.
MAX_COMMON_NAME_LENGTH = 64


class CertificateError(RuntimeError):
    """Raised when CA or server certificate material cannot be produced."""


class TLSValidationSeverity(Enum):
    """Validation severities for TLS checks."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class TLSValidationFinding:
    """Individual validation check outcome."""

    scope: str
    check: str
    severity: TLSValidationSeverity
    message: str
    path: Path | None = None


@dataclass(frozen=True)
class CAMaterial:
    """Paths of the certificate authority key pair."""

    certificate: Path
    key: Path


@dataclass(frozen=True)
class ServerMaterial:
    """Paths of the registry's server key, CSR, certificate and SAN descriptor."""

    certificate: Path
    key: Path
    csr: Path
    san_config: Path


@dataclass(frozen=True)
class CAResult:
    """Outcome of :meth:`CertificateAuthority.ensure_ca`."""

    material: CAMaterial
    created: bool
    subject: str
    not_valid_after: datetime


@dataclass(frozen=True)
class ServerIssueResult:
    """Outcome of :meth:`CertificateAuthority.issue_server`."""

    material: ServerMaterial
    serial_number: int
    subject_alt_names: frozenset[str]
    not_valid_after: datetime

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "certificate": str(self.material.certificate),
            "key": str(self.material.key),
            "csr": str(self.material.csr),
            "san_config": str(self.material.san_config),
            "serial_number": f"{self.serial_number:x}",
            "subject_alt_names": sorted(self.subject_alt_names),
            "not_valid_after": self.not_valid_after.isoformat(),
        }


@dataclass(frozen=True)
class TLSValidationReport:
    """Aggregate validation results for the issued server certificate."""

    material: ServerMaterial
    ca: CAMaterial
    findings: tuple[TLSValidationFinding, ...]
    not_valid_before: datetime | None
    not_valid_after: datetime | None

    @property
    def has_errors(self) -> bool:
        """Return True when any finding is classified as an error."""
        return any(f.severity is TLSValidationSeverity.ERROR for f in self.findings)

    @property
    def has_warnings(self) -> bool:
        """Return True when the report includes warning findings."""
        return any(f.severity is TLSValidationSeverity.WARNING for f in self.findings)

    @property
    def status(self) -> TLSValidationSeverity:
        """Return the overall status derived from the findings."""
        if self.has_errors:
            return TLSValidationSeverity.ERROR
        if self.has_warnings:
            return TLSValidationSeverity.WARNING
        return TLSValidationSeverity.OK

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation of the report."""
        return {
            "paths": {
                "certificate": str(self.material.certificate),
                "key": str(self.material.key),
                "ca": str(self.ca.certificate),
            },
            "status": self.status.value,
            "not_valid_before": (
                self.not_valid_before.isoformat() if self.not_valid_before else None
            ),
            "not_valid_after": (
                self.not_valid_after.isoformat() if self.not_valid_after else None
            ),
            "findings": [
                {
                    "scope": finding.scope,
                    "check": finding.check,
                    "severity": finding.severity.value,
                    "message": finding.message,
                    "path": str(finding.path) if finding.path is not None else None,
                }
                for finding in self.findings
            ],
        }


class CertificateAuthority:
    """Issue registry certificates from a CA kept in *certs_dir*."""

    def __init__(
        self,
        certs_dir: Path,
        settings: CertificateConfig,
        templates: TemplateEngine,
    ) -> None:
        """Bind the authority to a certificate directory and issuance policy."""
        self.certs_dir = certs_dir
        self.settings = settings
        self.templates = templates

    @property
    def ca_material(self) -> CAMaterial:
        """Return the CA key pair paths."""
        return CAMaterial(
            certificate=self.certs_dir / CA_CERT_NAME,
            key=self.certs_dir / CA_KEY_NAME,
        )

    @property
    def server_material(self) -> ServerMaterial:
        """Return the server material paths."""
        return ServerMaterial(
            certificate=self.certs_dir / SERVER_CERT_NAME,
            key=self.certs_dir / SERVER_KEY_NAME,
            csr=self.certs_dir / SERVER_CSR_NAME,
            san_config=self.certs_dir / SAN_CONFIG_NAME,
        )

    def ensure_ca(self, *, now: datetime | None = None) -> CAResult:
        """Reuse the CA when ``ca.crt`` exists, otherwise create one."""
        material = self.ca_material
        if material.certificate.exists():
            if not material.key.exists():
                raise CertificateError(
                    f"Found {material.certificate} but its key {material.key} is missing; "
                    "remove the certificate to generate a new CA."
                )
            ca_cert, _ = self._load_ca()
            return CAResult(
                material=material,
                created=False,
                subject=ca_cert.subject.rfc4514_string(),
                not_valid_after=_not_valid_after(ca_cert),
            )

        issued_at = now or datetime.now(UTC)
        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=self.settings.key_size)
            name = x509.Name(
                [x509.NameAttribute(NameOID.COMMON_NAME, self.settings.ca_common_name)]
            )
            certificate = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(issued_at)
                .not_valid_after(issued_at + timedelta(days=self.settings.ca_days))
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=True,
                        crl_sign=True,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                    critical=False,
                )
                .sign(key, hashes.SHA256())
            )
        except (ValueError, TypeError) as exc:
            raise CertificateError(f"Failed to generate CA: {exc}") from exc

        self._write(material.key, _private_key_pem(key), mode=0o600)
        self._write(
            material.certificate,
            certificate.public_bytes(serialization.Encoding.PEM),
            mode=0o644,
        )
        return CAResult(
            material=material,
            created=True,
            subject=certificate.subject.rfc4514_string(),
            not_valid_after=_not_valid_after(certificate),
        )

    def issue_server(
        self,
        host: str,
        ip: str,
        *,
        now: datetime | None = None,
    ) -> ServerIssueResult:
        """Generate a fresh key, CSR and CA-signed certificate for *host*/*ip*."""
        ca_cert, ca_key = self._load_ca()
        issued_at = now or datetime.now(UTC)
        try:
            address = ipaddress.ip_address(ip)
        except ValueError as exc:
            raise CertificateError(f"Invalid IP address for SAN: {ip!r}") from exc

        try:
            key = rsa.generate_private_key(public_exponent=65537, key_size=self.settings.key_size)
            common_name = host[:MAX_COMMON_NAME_LENGTH]
            subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
            csr = (
                x509.CertificateSigningRequestBuilder()
                .subject_name(subject)
                .sign(key, hashes.SHA256())
            )
            certificate = (
                x509.CertificateBuilder()
                .subject_name(csr.subject)
                .issuer_name(ca_cert.subject)
                .public_key(csr.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(issued_at)
                .not_valid_after(issued_at + timedelta(days=self.settings.server_days))
                .add_extension(
                    x509.SubjectAlternativeName([x509.DNSName(host), x509.IPAddress(address)]),
                    critical=False,
                )
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=True,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                    critical=False,
                )
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                    critical=False,
                )
                .sign(ca_key, hashes.SHA256())
            )
            san_text = self.templates.render_to_string(
                "tls/san.cnf.j2",
                {"host": host, "ip": str(address)},
            )
        except (ValueError, TypeError) as exc:
            raise CertificateError(f"Failed to issue server certificate: {exc}") from exc

        material = self.server_material
        self._write(material.key, _private_key_pem(key), mode=0o600)
        self._write(material.san_config, san_text.encode("utf-8"), mode=0o644)
        self._write(material.csr, csr.public_bytes(serialization.Encoding.PEM), mode=0o644)
        self._write(
            material.certificate,
            certificate.public_bytes(serialization.Encoding.PEM),
            mode=0o644,
        )
        return ServerIssueResult(
            material=material,
            serial_number=certificate.serial_number,
            subject_alt_names=subject_alt_names(certificate),
            not_valid_after=_not_valid_after(certificate),
        )

    def _load_ca(self) -> tuple[x509.Certificate, rsa.RSAPrivateKey]:
        material = self.ca_material
        try:
            ca_cert = _load_certificate(material.certificate)
            ca_key = serialization.load_pem_private_key(
                material.key.read_bytes(),
                password=None,
            )
        except (OSError, ValueError, TypeError) as exc:
            raise CertificateError(f"Unable to load CA from {self.certs_dir}: {exc}") from exc
        if not isinstance(ca_key, rsa.RSAPrivateKey):
            raise CertificateError(f"CA key {material.key} is not an RSA key.")
        if not _public_keys_match(ca_cert, ca_key):
            raise CertificateError(
                f"CA certificate {material.certificate} does not match {material.key}."
            )
        return ca_cert, ca_key

    def _write(self, path: Path, data: bytes, *, mode: int) -> None:
        try:
            atomic_write_bytes(path, data, mode=mode)
        except OSError as exc:
            raise CertificateError(f"Failed to write {path}: {exc}") from exc


class TLSValidator:
    """Check the issued server certificate against the CA and the target address."""

    def __init__(self, settings: CertificateConfig) -> None:
        """Capture the expiry warning threshold."""
        self._settings = settings

    def validate(
        self,
        material: ServerMaterial,
        ca: CAMaterial,
        *,
        host: str,
        ip: str,
        now: datetime | None = None,
    ) -> TLSValidationReport:
        """Validate *material* and return a structured report."""
        now = now or datetime.now(UTC)
        findings: list[TLSValidationFinding] = []

        present = [
            self._check_file(material.certificate, "certificate", findings),
            self._check_file(material.key, "key", findings),
            self._check_file(ca.certificate, "ca", findings),
        ]
        not_before: datetime | None = None
        not_after: datetime | None = None
        if not all(present):
            return TLSValidationReport(material, ca, tuple(findings), None, None)

        try:
            cert = _load_certificate(material.certificate)
            key = serialization.load_pem_private_key(material.key.read_bytes(), password=None)
            ca_cert = _load_certificate(ca.certificate)
        except (OSError, ValueError, TypeError) as exc:
            findings.append(
                TLSValidationFinding(
                    scope="certificate",
                    check="parse",
                    severity=TLSValidationSeverity.ERROR,
                    message=f"Failed to parse TLS material: {exc}",
                    path=material.certificate,
                )
            )
            return TLSValidationReport(material, ca, tuple(findings), None, None)

        if _public_keys_match(cert, key):
            findings.append(
                self._ok("certificate", "match", "Certificate and key match.", material)
            )
        else:
            findings.append(
                TLSValidationFinding(
                    scope="certificate",
                    check="match",
                    severity=TLSValidationSeverity.ERROR,
                    message="Certificate does not match the server key.",
                    path=material.certificate,
                )
            )

        expected = expected_subject_alt_names(host, ip)
        actual = subject_alt_names(cert)
        if actual == expected:
            findings.append(
                self._ok(
                    "certificate",
                    "san",
                    f"Subject alternative names match ({', '.join(sorted(actual))}).",
                    material,
                )
            )
        else:
            findings.append(
                TLSValidationFinding(
                    scope="certificate",
                    check="san",
                    severity=TLSValidationSeverity.ERROR,
                    message=(
                        f"Subject alternative names {sorted(actual)} do not match "
                        f"expected {sorted(expected)}."
                    ),
                    path=material.certificate,
                )
            )

        try:
            cert.verify_directly_issued_by(ca_cert)
        except (ValueError, TypeError, InvalidSignature) as exc:
            findings.append(
                TLSValidationFinding(
                    scope="certificate",
                    check="issuer",
                    severity=TLSValidationSeverity.ERROR,
                    message=(
                        "Certificate was not issued by the local CA: "
                        f"{str(exc) or 'bad signature'}"
                    ),
                    path=material.certificate,
                )
            )
        else:
            findings.append(
                self._ok("certificate", "issuer", "Certificate signed by the local CA.", material)
            )

        not_before = _not_valid_before(cert)
        not_after = _not_valid_after(cert)
        if not_after <= now:
            severity = TLSValidationSeverity.ERROR
            message = f"Certificate expired on {not_after.isoformat()}"
        else:
            days_remaining = (not_after - now).days
            if days_remaining <= self._settings.warn_expiry_days:
                severity = TLSValidationSeverity.WARNING
                message = (
                    "Certificate expires soon "
                    f"({not_after.isoformat()}, {days_remaining} day(s) remaining)"
                )
            else:
                severity = TLSValidationSeverity.OK
                message = f"Certificate valid until {not_after.isoformat()}"
        findings.append(
            TLSValidationFinding(
                scope="certificate",
                check="expiry",
                severity=severity,
                message=message,
                path=material.certificate,
            )
        )

        return TLSValidationReport(
            material=material,
            ca=ca,
            findings=tuple(findings),
            not_valid_before=not_before,
            not_valid_after=not_after,
        )

    @staticmethod
    def _ok(
        scope: str,
        check: str,
        message: str,
        material: ServerMaterial,
    ) -> TLSValidationFinding:
        return TLSValidationFinding(
            scope=scope,
            check=check,
            severity=TLSValidationSeverity.OK,
            message=message,
            path=material.certificate,
        )

    def _check_file(
        self,
        path: Path,
        scope: str,
        findings: list[TLSValidationFinding],
    ) -> bool:
        if not path.is_file():
            findings.append(
                TLSValidationFinding(
                    scope=scope,
                    check="exists",
                    severity=TLSValidationSeverity.ERROR,
                    message="File does not exist.",
                    path=path,
                )
            )
            return False
        if not os.access(path, os.R_OK):
            findings.append(
                TLSValidationFinding(
                    scope=scope,
                    check="readable",
                    severity=TLSValidationSeverity.ERROR,
                    message="File is not readable by the current user.",
                    path=path,
                )
            )
            return False
        return True


def expected_subject_alt_names(host: str, ip: str) -> frozenset[str]:
    """Return the SAN set a certificate for *host*/*ip* must carry."""
    return frozenset({f"DNS:{host}", f"IP:{ipaddress.ip_address(ip)}"})


def subject_alt_names(cert: x509.Certificate) -> frozenset[str]:
    """Return the certificate's SANs as ``DNS:...``/``IP:...`` strings."""
    try:
        extension = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return frozenset()
    names = extension.value
    dns = {f"DNS:{value}" for value in names.get_values_for_type(x509.DNSName)}
    ips = {f"IP:{value}" for value in names.get_values_for_type(x509.IPAddress)}
    return frozenset(dns | ips)


def _private_key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _public_keys_match(cert: x509.Certificate, private_key: object) -> bool:
    public_key = getattr(private_key, "public_key", None)
    if public_key is None:
        return False
    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    cert_bytes = cert.public_key().public_bytes(serialization.Encoding.DER, spki)
    key_bytes = cast(rsa.RSAPublicKey, public_key()).public_bytes(
        serialization.Encoding.DER, spki
    )
    return cert_bytes == key_bytes


def _not_valid_before(cert: x509.Certificate) -> datetime:
    moment = getattr(cert, "not_valid_before_utc", None)
    if isinstance(moment, datetime):
        return moment
    return _as_utc(cert.not_valid_before)  # pragma: no cover - compatibility fallback


def _not_valid_after(cert: x509.Certificate) -> datetime:
    moment = getattr(cert, "not_valid_after_utc", None)
    if isinstance(moment, datetime):
        return moment
    return _as_utc(cert.not_valid_after)  # pragma: no cover - compatibility fallback


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def describe_ca(result: CAResult) -> Mapping[str, object]:
    """Return a loggable summary of a CA result."""
    return {
        "certificate": str(result.material.certificate),
        "created": result.created,
        "subject": result.subject,
        "not_valid_after": result.not_valid_after.isoformat(),
    }


__all__ = [
    "MAX_COMMON_NAME_LENGTH",
    "CAMaterial",
    "CAResult",
    "CertificateAuthority",
    "CertificateError",
    "ServerIssueResult",
    "ServerMaterial",
    "TLSValidationFinding",
    "TLSValidationReport",
    "TLSValidationSeverity",
    "TLSValidator",
    "describe_ca",
    "expected_subject_alt_names",
    "subject_alt_names",
]
