"""TLS material and QUIC configuration for the print server and client."""

import logging
import ssl
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional, Tuple

from aioquic.quic.configuration import QuicConfiguration
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from ..config import ALPN_PROTOCOL
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CERT_FILENAME = "cert.pem"
KEY_FILENAME = "key.pem"
SELF_SIGNED_NAME = "localhost"
SELF_SIGNED_DAYS = 3650

CertificateChain = List[x509.Certificate]


def _is_der(path: Path) -> bool:
    return path.suffix.lower() == ".der"


def load_certificate_chain(path: Path) -> CertificateChain:
    """
    Read a certificate chain, DER when the file ends in ``.der``, else PEM.

    Raises:
        ConfigurationError: If the file is unreadable or holds no certificate
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read certificate chain: {e}", context={"path": str(path)}
        ) from e
    try:
        if _is_der(path):
            return [x509.load_der_x509_certificate(data)]
        chain = x509.load_pem_x509_certificates(data)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid certificate: {e}", context={"path": str(path)}
        ) from e
    if not chain:
        raise ConfigurationError("No certificates found", context={"path": str(path)})
    return chain


def load_private_key(path: Path) -> Any:
    """
    Read an unencrypted private key (PKCS#8 or PKCS#1), DER or PEM.

    Raises:
        ConfigurationError: If the file is unreadable or holds no usable key
    """
    try:
        data = path.read_bytes()
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read private key: {e}", context={"path": str(path)}
        ) from e
    try:
        if _is_der(path):
            return serialization.load_der_private_key(data, password=None)
        return serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            f"No usable private key found: {e}", context={"path": str(path)}
        ) from e


def generate_self_signed(
    hostname: str = SELF_SIGNED_NAME,
) -> Tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Create a self-signed EC P-256 certificate valid for ``hostname``."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=SELF_SIGNED_DAYS))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(hostname)]), critical=False
        )
        .sign(key, hashes.SHA256())
    )
    return certificate, key


def load_or_create_self_signed(data_dir: Path) -> Tuple[CertificateChain, Any]:
    """
    Return the cached self-signed certificate, generating it on first use.

    Raises:
        ConfigurationError: If the cache cannot be read or written
    """
    cert_path = data_dir / CERT_FILENAME
    key_path = data_dir / KEY_FILENAME
    if cert_path.exists() and key_path.exists():
        return load_certificate_chain(cert_path), load_private_key(key_path)

    logger.info("Generating self-signed certificate")
    certificate, key = generate_self_signed()
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        key_path.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )
        key_path.chmod(0o600)
        cert_path.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    except OSError as e:
        raise ConfigurationError(
            f"Failed to write certificate: {e}", context={"path": str(data_dir)}
        ) from e
    logger.info(f"Self-signed certificate written to {cert_path}")
    return [certificate], key


def load_tls_material(
    cert_path: Optional[Path], key_path: Optional[Path], data_dir: Path
) -> Tuple[CertificateChain, Any]:
    """Use the given key and chain, or fall back to the cached self-signed pair."""
    if cert_path is not None and key_path is not None:
        return load_certificate_chain(cert_path), load_private_key(key_path)
    return load_or_create_self_signed(data_dir)


def server_configuration(
    chain: CertificateChain, private_key: Any, idle_timeout: float = 60.0
) -> QuicConfiguration:
    """Build the QUIC server configuration with the fixed ALPN identifier."""
    configuration = QuicConfiguration(
        alpn_protocols=[ALPN_PROTOCOL],
        is_client=False,
        idle_timeout=idle_timeout,
    )
    configuration.certificate = chain[0]
    configuration.certificate_chain = list(chain[1:])
    configuration.private_key = private_key
    return configuration


def client_configuration(
    server_name: Optional[str] = None,
    cafile: Optional[Path] = None,
    verify: bool = True,
    idle_timeout: float = 60.0,
) -> QuicConfiguration:
    """
    Build the QUIC client configuration.

    Args:
        server_name: Name checked against the server certificate
        cafile: Extra trust anchor (PEM, or DER with a .der suffix)
        verify: Whether to verify the server certificate at all
        idle_timeout: QUIC idle timeout in seconds
    """
    configuration = QuicConfiguration(
        alpn_protocols=[ALPN_PROTOCOL],
        is_client=True,
        server_name=server_name,
        idle_timeout=idle_timeout,
    )
    if not verify:
        logger.warning(
            "Certificate verification is DISABLED. "
            "Use only for testing/development environments."
        )
        configuration.verify_mode = ssl.CERT_NONE
    elif cafile is not None:
        cadata = b"".join(
            cert.public_bytes(serialization.Encoding.PEM)
            for cert in load_certificate_chain(cafile)
        )
        configuration.load_verify_locations(cadata=cadata)
    return configuration
