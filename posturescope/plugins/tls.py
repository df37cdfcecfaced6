"""
TLS configuration plugin for PostureScope.

Connects to the target on port 443, records the negotiated protocol and
cipher, parses the served certificate with ``cryptography`` and checks
whether it verifies against the system trust store.  An HTTPS request then
looks for the ``Strict-Transport-Security`` header.

This is an **active** plugin that establishes TLS connections to the target.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from datetime import timezone
from typing import Any, Optional

import httpx
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import dsa, ec, rsa
from cryptography.x509.oid import NameOID

from posturescope.core.exceptions import PluginFailure
from posturescope.plugins.base import BasePlugin, PluginName
from posturescope.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)

_CONNECT_TIMEOUT = 8.0
_TLS_VERSION_LABELS: dict[str, str] = {
    "TLSv1": "TLS 1.0",
    "TLSv1.1": "TLS 1.1",
    "TLSv1.2": "TLS 1.2",
    "TLSv1.3": "TLS 1.3",
}


@PluginRegistry.register
class TlsPlugin(BasePlugin):
    """TLS protocol, certificate and HSTS inspection on port 443."""

    name = PluginName.TLS
    description = "TLS Protocol, Certificate & HSTS Inspection"
    timeout_seconds = 25.0

    port: int = 443

    async def scan(self, domain: str, dns_scan_id: str) -> dict[str, Any]:
        errors: list[str] = []

        inspect_ctx = ssl.create_default_context()
        inspect_ctx.check_hostname = False
        inspect_ctx.verify_mode = ssl.CERT_NONE

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(domain, self.port, ssl=inspect_ctx, server_hostname=domain),
                timeout=_CONNECT_TIMEOUT,
            )
        except ssl.SSLError as exc:
            raise PluginFailure(self.name, exc.reason or str(exc)) from exc
        except (asyncio.TimeoutError, OSError) as exc:
            raise PluginFailure(
                self.name, f"could not connect to {domain}:{self.port}: {exc}"
            ) from exc

        try:
            ssl_object = writer.get_extra_info("ssl_object")
            protocol = ssl_object.version() if ssl_object else None
            cipher = ssl_object.cipher() if ssl_object else None
            der_cert = ssl_object.getpeercert(binary_form=True) if ssl_object else None
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ssl.SSLError, OSError):
                pass

        if der_cert is None:
            raise PluginFailure(self.name, "server did not present a certificate")

        certificate_valid, verify_error = await self._verify(domain)
        if verify_error:
            errors.append(verify_error)

        hsts_header = False
        try:
            hsts_header = await self._has_hsts(domain)
        except httpx.HTTPError as exc:
            errors.append(f"HSTS check failed: {exc}")

        return {
            "tls_version": _TLS_VERSION_LABELS.get(protocol or "", protocol or "unknown"),
            "cipher_suite": cipher[0] if cipher else "",
            "hsts_header": hsts_header,
            "certificate_valid": certificate_valid,
            **self._describe_certificate(der_cert),
            "errors": errors,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _verify(self, domain: str) -> tuple[bool, Optional[str]]:
        """Attempt a verified handshake; return (valid, reason-if-invalid)."""
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    domain, self.port, ssl=ssl.create_default_context(), server_hostname=domain
                ),
                timeout=_CONNECT_TIMEOUT,
            )
        except ssl.SSLCertVerificationError as exc:
            return False, f"certificate verification failed: {exc.verify_message}"
        except (ssl.SSLError, asyncio.TimeoutError, OSError) as exc:
            return False, f"verified handshake failed: {exc}"

        writer.close()
        try:
            await writer.wait_closed()
        except (ssl.SSLError, OSError):
            pass
        return True, None

    async def _has_hsts(self, domain: str) -> bool:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(connect=8.0, read=10.0, write=8.0, pool=8.0),
            follow_redirects=True,
            verify=False,
        ) as client:
            response = await client.get(f"https://{domain}/")
            return "strict-transport-security" in response.headers

    @staticmethod
    def _describe_certificate(der_cert: bytes) -> dict[str, Any]:
        """Extract issuer, subject, validity window, SANs and key strength."""
        cert = x509.load_der_x509_certificate(der_cert)

        def _name(value: x509.Name) -> str:
            parts = [
                attr.value
                for oid in (NameOID.COMMON_NAME, NameOID.ORGANIZATION_NAME)
                for attr in value.get_attributes_for_oid(oid)
            ]
            return ", ".join(str(part) for part in parts) or value.rfc4514_string()

        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            dns_names = san.value.get_values_for_type(x509.DNSName)
        except x509.ExtensionNotFound:
            dns_names = []

        public_key = cert.public_key()
        if isinstance(public_key, rsa.RSAPublicKey):
            key_type = "RSA"
        elif isinstance(public_key, dsa.DSAPublicKey):
            key_type = "DSA"
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            key_type = "EC"
        else:
            key_type = "other"
        key_strength = getattr(public_key, "key_size", None)

        return {
            "cert_issuer": _name(cert.issuer),
            "cert_subject": _name(cert.subject),
            "cert_not_before": cert.not_valid_before_utc.astimezone(timezone.utc).isoformat(),
            "cert_not_after": cert.not_valid_after_utc.astimezone(timezone.utc).isoformat(),
            "cert_dns_names": list(dns_names),
            "cert_key_type": key_type,
            "cert_key_strength": key_strength,
            "cert_signature_algorithm": (
                cert.signature_hash_algorithm.name if cert.signature_hash_algorithm else ""
            ),
        }
