"""
Certificate step — TLS for the panel domain.

acme.sh in standalone mode when the domain already points at this
host; a self-signed certificate otherwise, or when issuance fails.
Either way the panel gets ``<ssl_dir>/<domain>.crt`` and ``.key``.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from hoststack.core.detection.host import resolve_domain
from hoststack.core.engine.step import Step, StepContext
from hoststack.core.models.compensation import RemovePackages, RemovePath, RunCallback, Tier
from hoststack.core.models.step import StepResult

logger = logging.getLogger(__name__)

MIN_VALID_DAYS = 7
SELF_SIGNED_DAYS = 365
ACME_INSTALLER_URL = "https://get.acme.sh"


def cert_paths(ctx: StepContext) -> tuple[Path, Path]:
    domain = ctx.config.panel_domain
    return ctx.paths.ssl_dir / f"{domain}.crt", ctx.paths.ssl_dir / f"{domain}.key"


def load_certificate(path: Path) -> x509.Certificate | None:
    try:
        return x509.load_pem_x509_certificate(path.read_bytes())
    except (OSError, ValueError):
        return None


def days_left(cert: x509.Certificate, now: dt.datetime | None = None) -> int:
    now = now or dt.datetime.now(dt.UTC)
    return (cert.not_valid_after_utc - now).days


def is_self_signed(cert: x509.Certificate) -> bool:
    return cert.issuer == cert.subject


def generate_self_signed(domain: str, days: int = SELF_SIGNED_DAYS) -> tuple[bytes, bytes]:
    """PEM (certificate, private key) for ``domain``."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, domain),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Marzban"),
        x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
    ])
    now = dt.datetime.now(dt.UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(minutes=5))
        .not_valid_after(now + dt.timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    return cert.public_bytes(serialization.Encoding.PEM), key_pem


class CertificateStep(Step):
    name = "certificate"
    title = "TLS certificate"
    flag = "certificate_ready"

    def probe(self, ctx: StepContext) -> bool:
        cert_file, key_file = cert_paths(ctx)
        if not key_file.is_file():
            return False
        cert = load_certificate(cert_file)
        return cert is not None and days_left(cert) > MIN_VALID_DAYS

    def resume_outputs(self, ctx: StepContext) -> dict:
        cert_file, key_file = cert_paths(ctx)
        cert = load_certificate(cert_file)
        return {
            "cert_file": cert_file,
            "key_file": key_file,
            "cert_self_signed": bool(cert and is_self_signed(cert)),
        }

    def execute(self, ctx: StepContext) -> StepResult:
        cert_file, key_file = cert_paths(ctx)
        ctx.files.create_dir(ctx.paths.ssl_dir, mode=0o700)

        domain = ctx.config.panel_domain
        addresses = resolve_domain(domain)
        issued = False
        if ctx.facts.public_ip in addresses:
            issued = self._issue_with_acme(ctx, cert_file, key_file)
        else:
            logger.warning(
                "%s resolves to %s, not %s; using a self-signed certificate",
                domain, ", ".join(sorted(addresses)) or "nothing", ctx.facts.public_ip,
            )

        if not issued:
            cert_pem, key_pem = generate_self_signed(domain)
            ctx.files.write_secure_file(key_file, key_pem)
            ctx.files.write_file(cert_file, cert_pem, mode=0o644)
            logger.warning("Self-signed certificate generated for %s", domain)

        cert = load_certificate(cert_file)
        if cert is None or not key_file.is_file():
            return StepResult.failure(f"no usable certificate at {cert_file}")
        remaining = days_left(cert)
        if remaining < 0:
            return StepResult.failure(f"certificate {cert_file} has expired")
        if remaining < 30:
            logger.warning("Certificate expires in %d days", remaining)

        return StepResult.success(
            cert_file=cert_file, key_file=key_file, cert_self_signed=not issued,
        )

    # ── acme.sh ─────────────────────────────────────────────────

    def _issue_with_acme(self, ctx: StepContext, cert_file: Path, key_file: Path) -> bool:
        acme = ctx.paths.acme_dir / "acme.sh"
        if not acme.is_file() and not self._install_acme(ctx):
            return False

        holder = self._port_80_holder(ctx)
        if holder:
            logger.warning("Port 80 is used by %s; stopping it for issuance", holder)
            services = ctx.host.services
            ctx.registry.register(
                f"Start {holder}",
                RunCallback(name=f"start {holder}", callback=lambda: services.start(holder)),
                Tier.NORMAL,
            )
            services.stop(holder)

        domain = ctx.config.panel_domain
        try:
            result = ctx.host.runner(
                [
                    str(acme), "--issue", "--standalone",
                    "-d", domain,
                    "--keylength", "ec-256",
                    "--server", "letsencrypt",
                    "--email", ctx.config.ssl_email,
                ],
                timeout=300,
            )
            if not result.ok:
                logger.warning("Let's Encrypt issuance failed: %s", result.describe())
                return False

            ctx.files.preserve(key_file)
            ctx.files.preserve(cert_file)
            result = ctx.host.runner(
                [
                    str(acme), "--install-cert", "-d", domain, "--ecc",
                    "--key-file", str(key_file),
                    "--fullchain-file", str(cert_file),
                    "--reloadcmd", "docker restart marzban || true",
                ],
                timeout=120,
            )
            if not result.ok:
                logger.warning("Installing issued certificate failed: %s", result.describe())
                return False
        finally:
            if holder:
                ctx.host.services.start(holder)

        key_file.chmod(0o600)
        cert_file.chmod(0o644)
        logger.info("✓ Let's Encrypt certificate installed for %s", domain)
        return True

    def _install_acme(self, ctx: StepContext) -> bool:
        apt = ctx.host.packages
        missing = apt.missing(["socat"])
        if missing:
            ctx.registry.register("Remove socat", RemovePackages(packages=tuple(missing)))
            result = apt.install(missing)
            if not result.ok:
                logger.warning("Installing socat failed: %s", result.describe())
                return False

        acme_dir = ctx.paths.acme_dir
        ctx.registry.register(f"Remove {acme_dir}", RemovePath(path=str(acme_dir)), Tier.CLEANUP)

        installer = ctx.paths.state_dir / "get-acme.sh"
        ctx.files.preserve(installer)
        resp = ctx.host.http.download(ACME_INSTALLER_URL, installer)
        if not resp.ok:
            logger.warning("Downloading acme.sh failed: %s", resp.error or resp.status)
            return False

        result = ctx.host.runner(
            ["sh", str(installer), f"email={ctx.config.ssl_email}"],
            timeout=300,
            env_overrides={"HOME": str(acme_dir.parent)},
        )
        if not result.ok:
            logger.warning("acme.sh install failed: %s", result.describe())
            return False
        return (acme_dir / "acme.sh").is_file()

    def _port_80_holder(self, ctx: StepContext) -> str:
        result = ctx.host.runner(["ss", "-tlnp"], timeout=15)
        if not result.ok:
            return ""
        for line in result.stdout.splitlines():
            columns = line.split()
            if len(columns) >= 4 and columns[3].endswith(":80"):
                match = re.search(r'users:\(\("([^"]+)"', line)
                return match.group(1) if match else ""
        return ""
