"""
=============================================================================
CERTIFICATE STORE
=============================================================================

Self-signed TLS certificates for local HTTPS.

    ┌─────────────────────────────────────────────────────────────────────┐
    │              get_certificate("localhost")                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   custom cert/key paths given?                                      │
    │      └── load + check the key matches ─► info, or None              │
    │                                                                      │
    │   memory cache hit, files still on disk, not expired?  ─► info      │
    │                                                                      │
    │   <base>/localhost/server.crt + server.key on disk, valid?  ─► info │
    │                                                                      │
    │   generate_if_missing?                                              │
    │      └── RSA 2048 + self-signed X.509, 1 year  ─► write, cache      │
    │                                                                      │
    │   otherwise  ─► None                                                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Layout on disk:

    ~/.liveserver/certs/            (LIVESERVER_CERT_DIR overrides)
        localhost/
            server.crt              PEM certificate
            server.key              PEM private key, mode 0600

Generated certificates cover the requested domain plus localhost, 127.0.0.1
and ::1, so one certificate works for every way a developer types the URL.

A missing or broken custom pair returns None; callers decide whether to
fall back to HTTP. Failing to WRITE a freshly generated pair raises
CertificateError.

=============================================================================
"""

import ipaddress
import logging
import os
import shutil
import ssl
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .errors import CertificateError


logger = logging.getLogger(__name__)

DEFAULT_CERT_DIR = Path.home() / ".liveserver" / "certs"
CERT_FILENAME = "server.crt"
KEY_FILENAME = "server.key"

KEY_SIZE = 2048
VALIDITY_DAYS = 365
ORGANIZATION = "LiveServer"

_LOOPBACK_NAMES = ("localhost", "127.0.0.1", "::1")


@dataclass(frozen=True)
class CertificateInfo:
    """
    One TLS identity, generated or loaded.

    Never mutated: a refreshed certificate is a new CertificateInfo.

    Attributes:
        cert: PEM certificate.
        key: PEM private key ("" when only the certificate was inspected).
        domain: Domain the certificate was requested for.
        is_self_signed: Issuer and subject are the same name.
        issuer: Issuer common name (or full name if it has no CN).
        subject: Subject common name (or full name if it has no CN).
        expires_at: Expiry (UTC).
        cert_path: Backing certificate file, if persisted.
        key_path: Backing key file, if persisted.
    """

    cert: str
    key: str
    domain: str
    is_self_signed: bool
    issuer: str
    subject: str
    expires_at: datetime
    cert_path: Optional[str] = None
    key_path: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


def _common_name(name: x509.Name) -> str:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if attributes:
        return str(attributes[0].value)
    return name.rfc4514_string()


def _public_bytes(public_key) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _cert_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def _key_pem(key) -> str:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def is_valid_domain(domain: str) -> bool:
    """
    Domains become directory names, so anything that could escape the
    store (separators, "..", NUL) is refused.
    """
    if not domain or len(domain) > 253:
        return False
    if domain in (".", "..") or "\x00" in domain:
        return False
    return "/" not in domain and "\\" not in domain


class CertificateStore:
    """
    Generates, persists, caches and validates certificates per domain.

    Thread-safe: all cache and disk operations run under one lock.

    Usage:
        store = CertificateStore()
        info = store.get_certificate("localhost")
        context = create_ssl_context(info)
    """

    def __init__(self, base_path: Optional[str | Path] = None):
        base = base_path or os.getenv("LIVESERVER_CERT_DIR") or DEFAULT_CERT_DIR
        self.base_path = Path(base).expanduser()
        self._cache: Dict[str, CertificateInfo] = {}
        self._lock = threading.RLock()

    def _paths(self, domain: str) -> tuple[Path, Path]:
        directory = self.base_path / domain
        return directory / CERT_FILENAME, directory / KEY_FILENAME

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get_certificate(
        self,
        domain: str = "localhost",
        cert_path: Optional[str] = None,
        key_path: Optional[str] = None,
        generate_if_missing: bool = True,
    ) -> Optional[CertificateInfo]:
        """
        Return a usable certificate for ``domain``.

        Args:
            domain: Domain to issue for (and the store subdirectory).
            cert_path: User-supplied PEM certificate. With ``key_path``,
                       bypasses the store entirely.
            key_path: User-supplied PEM key.
            generate_if_missing: Generate when nothing usable exists.

        Returns:
            CertificateInfo, or None when no certificate is available.

        Raises:
            CertificateError: A generated pair could not be written.
        """
        if cert_path or key_path:
            if not (cert_path and key_path):
                logger.warning("Custom certificate needs both a certificate and a key path")
                return None
            return self.load_pair(cert_path, key_path, domain)

        if not is_valid_domain(domain):
            logger.warning(f"Invalid certificate domain: {domain!r}")
            return None

        with self._lock:
            cached = self._cache.get(domain)
            if cached is not None:
                if self._is_usable(cached):
                    logger.debug(f"Using cached certificate for {domain}")
                    return cached
                logger.info(f"Cached certificate for {domain} is stale, discarding")
                del self._cache[domain]

            cert_file, key_file = self._paths(domain)
            if cert_file.is_file() and key_file.is_file():
                info = self.load_pair(str(cert_file), str(key_file), domain)
                if info is not None and not info.is_expired():
                    logger.debug(f"Loaded stored certificate for {domain}")
                    self._cache[domain] = info
                    return info
                logger.info(f"Stored certificate for {domain} is unusable, regenerating")

            if not generate_if_missing:
                return None

            info = self._generate(domain)
            self._cache[domain] = info
            return info

    def _is_usable(self, info: CertificateInfo) -> bool:
        if info.is_expired():
            return False
        if info.cert_path and not os.path.isfile(info.cert_path):
            return False
        if info.key_path and not os.path.isfile(info.key_path):
            return False
        return True

    def load_pair(
        self,
        cert_path: str,
        key_path: str,
        domain: Optional[str] = None,
    ) -> Optional[CertificateInfo]:
        """
        Load a PEM certificate and key from disk.

        Returns None (and logs why) if either file is missing, unparsable,
        or the key does not belong to the certificate.
        """
        try:
            cert_pem = Path(cert_path).read_bytes()
            key_pem = Path(key_path).read_bytes()
            cert = x509.load_pem_x509_certificate(cert_pem)
            key = serialization.load_pem_private_key(key_pem, password=None)
        except OSError as e:
            logger.warning(f"Cannot read certificate files: {e}")
            return None
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            logger.warning(f"Invalid certificate or key ({cert_path}, {key_path}): {e}")
            return None

        if _public_bytes(key.public_key()) != _public_bytes(cert.public_key()):
            logger.warning(f"Private key {key_path} does not match certificate {cert_path}")
            return None

        # Files may carry non-ASCII text around the PEM blocks (OpenSSL "Bag
        # Attributes"); keep only the parsed objects
        return self._info_from(
            cert,
            _cert_pem(cert),
            _key_pem(key),
            domain or _common_name(cert.subject),
            str(Path(cert_path).resolve()),
            str(Path(key_path).resolve()),
        )

    def _info_from(
        self,
        cert: x509.Certificate,
        cert_pem: str,
        key_pem: str,
        domain: str,
        cert_path: Optional[str],
        key_path: Optional[str],
    ) -> CertificateInfo:
        return CertificateInfo(
            cert=cert_pem,
            key=key_pem,
            domain=domain,
            is_self_signed=cert.issuer == cert.subject,
            issuer=_common_name(cert.issuer),
            subject=_common_name(cert.subject),
            expires_at=cert.not_valid_after_utc,
            cert_path=cert_path,
            key_path=key_path,
        )

    # =========================================================================
    # GENERATION
    # =========================================================================

    def _alt_names(self, domain: str) -> List[x509.GeneralName]:
        names: List[x509.GeneralName] = []
        for value in (domain, *_LOOPBACK_NAMES):
            try:
                entry: x509.GeneralName = x509.IPAddress(ipaddress.ip_address(value))
            except ValueError:
                entry = x509.DNSName(value)
            if entry not in names:
                names.append(entry)
        return names

    def _generate(self, domain: str) -> CertificateInfo:
        logger.info(f"Generating self-signed certificate for {domain}")

        key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
        name = x509.Name([
            x509.NameAttribute(NameOID.COMMON_NAME, domain),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, ORGANIZATION),
        ])
        now = datetime.now(timezone.utc)

        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            # Small backdate for clocks that disagree by a few minutes
            .not_valid_before(now - timedelta(minutes=5))
            .not_valid_after(now + timedelta(days=VALIDITY_DAYS))
            .add_extension(x509.SubjectAlternativeName(self._alt_names(domain)), critical=False)
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
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(key, hashes.SHA256())
        )

        cert_pem = cert.public_bytes(serialization.Encoding.PEM)
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )

        cert_file, key_file = self._paths(domain)
        try:
            cert_file.parent.mkdir(parents=True, exist_ok=True)
            cert_file.write_bytes(cert_pem)
            _write_private(key_file, key_pem)
        except OSError as e:
            raise CertificateError(
                f"Cannot write certificate for {domain} to {cert_file.parent}: {e}",
                details={"domain": domain, "path": str(cert_file.parent)},
            ) from e

        logger.info(f"Certificate for {domain} written to {cert_file.parent}")
        return self._info_from(
            cert,
            cert_pem.decode("ascii"),
            key_pem.decode("ascii"),
            domain,
            str(cert_file),
            str(key_file),
        )

    # =========================================================================
    # INSPECTION / CLEANUP
    # =========================================================================

    def get_certificate_info(self, cert_path: str) -> Optional[CertificateInfo]:
        """Inspect a PEM certificate file without its key."""
        try:
            cert = x509.load_pem_x509_certificate(Path(cert_path).read_bytes())
        except (OSError, ValueError) as e:
            logger.warning(f"Cannot read certificate {cert_path}: {e}")
            return None
        return self._info_from(
            cert,
            _cert_pem(cert),
            "",
            _common_name(cert.subject),
            str(Path(cert_path).resolve()),
            None,
        )

    def list_certificates(self) -> List[CertificateInfo]:
        """Every certificate persisted under the store, sorted by domain."""
        if not self.base_path.is_dir():
            return []

        found = []
        with self._lock:
            for directory in sorted(self.base_path.iterdir()):
                cert_file, key_file = self._paths(directory.name)
                if not cert_file.is_file():
                    continue
                if key_file.is_file():
                    info = self.load_pair(str(cert_file), str(key_file), directory.name)
                else:
                    info = self.get_certificate_info(str(cert_file))
                if info is not None:
                    found.append(info)
        return found

    def delete_certificates(self, domain: Optional[str] = None) -> bool:
        """
        Delete one domain's certificates, or the whole store when
        ``domain`` is None.
        """
        with self._lock:
            if domain is None:
                target = self.base_path
                self._cache.clear()
            else:
                if not is_valid_domain(domain):
                    logger.warning(f"Invalid certificate domain: {domain!r}")
                    return False
                target = self.base_path / domain
                self._cache.pop(domain, None)

            if not target.exists():
                return True
            try:
                shutil.rmtree(target)
            except OSError as e:
                logger.error(f"Cannot delete certificates in {target}: {e}")
                return False

        logger.info(f"Deleted certificates in {target}")
        return True

    def is_certificate_valid(self, info: CertificateInfo) -> bool:
        """Parsable, inside its validity window, and backing files present."""
        try:
            cert = x509.load_pem_x509_certificate(info.cert.encode("ascii"))
        except ValueError:
            return False
        now = datetime.now(timezone.utc)
        if not (cert.not_valid_before_utc <= now < cert.not_valid_after_utc):
            return False
        return self._is_usable(info)


def _write_private(path: Path, data: bytes) -> None:
    """Write ``data`` readable by the owner only."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    # O_CREAT's mode is ignored for a file that already existed
    os.chmod(path, 0o600)


def create_ssl_context(info: CertificateInfo) -> ssl.SSLContext:
    """
    Server-side SSLContext for a persisted certificate.

    Raises:
        CertificateError: The certificate has no backing files or OpenSSL
                          rejects them.
    """
    if not info.cert_path or not info.key_path:
        raise CertificateError(f"Certificate for {info.domain} has no files on disk")

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        context.load_cert_chain(info.cert_path, info.key_path)
    except (ssl.SSLError, OSError) as e:
        raise CertificateError(
            f"Cannot load certificate for {info.domain}: {e}",
            details={"cert_path": info.cert_path, "key_path": info.key_path},
        ) from e
    return context
