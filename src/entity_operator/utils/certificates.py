"""
Cluster CA handling and entity operator certificate secrets.

Leaf certificates for the topic and user operators are issued from the
cluster CA with the ``openssl`` command-line tool. The resulting secret
records, through annotations, the CA certificate and key generations the
material was issued under, so that a later reconciliation can tell whether
the CA has rotated since.
"""

import base64
import logging
import secrets
import string
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from entity_operator.constants import (
    ANNO_CA_CERT_GENERATION,
    ANNO_CA_KEY_GENERATION,
    ANNO_FORCE_RENEW,
    CA_CERT_DATA_KEY,
    CA_KEY_DATA_KEY,
    CERT_SUBJECT_ORGANIZATION,
    CERT_SUFFIX,
    ENTITY_OPERATOR_CERT_KEY_PREFIX,
    KEY_SUFFIX,
    KEYSTORE_SUFFIX,
    PASSWORD_SUFFIX,
)
from entity_operator.errors import CertificateError
from entity_operator.models.types import CaState

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400


@dataclass(frozen=True)
class CertAndKey:
    """PEM certificate and key with a PKCS#12 bundle of both."""

    cert: bytes
    key: bytes
    keystore: bytes
    password: str


class CertificateIssuer(Protocol):
    def issue(
        self,
        ca_cert: bytes,
        ca_key: bytes,
        common_name: str,
        validity_days: int,
    ) -> CertAndKey: ...

    def expires_within(self, cert: bytes, seconds: int) -> bool: ...


def b64(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return base64.b64encode(data).decode("utf-8")


def decode_secret_field(value: str) -> bytes:
    return base64.b64decode(value)


def generate_password() -> str:
    """Generate a random keystore password."""
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(24))


def _run_openssl(args: list[str]) -> subprocess.CompletedProcess:
    try:
        return subprocess.run(args=args, capture_output=True, check=True)
    except FileNotFoundError as e:
        raise CertificateError("openssl executable not found", cause=e) from e
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode("utf-8", errors="replace") if e.stderr else ""
        logger.debug(f"openssl {args[1]} failed with status {e.returncode}: {stderr}")
        raise CertificateError(
            f"openssl {args[1]} failed: {stderr.strip() or e.returncode}", cause=e
        ) from e


class OpensslCertificateIssuer:
    """Issues certificates signed by the cluster CA through ``openssl``."""

    def issue(
        self,
        ca_cert: bytes,
        ca_key: bytes,
        common_name: str,
        validity_days: int,
    ) -> CertAndKey:
        password = generate_password()

        with tempfile.TemporaryDirectory() as tempdirname:
            tempdir = Path(tempdirname)

            ca_cert_path = tempdir / "ca.crt"
            ca_cert_path.write_bytes(ca_cert)
            ca_key_path = tempdir / "ca.key"
            ca_key_path.write_bytes(ca_key)

            key_path = tempdir / "leaf.key"
            csr_path = tempdir / "leaf.csr"
            cert_path = tempdir / "leaf.crt"
            p12_path = tempdir / "leaf.p12"

            _run_openssl(
                [
                    "openssl",
                    "req",
                    "-new",
                    "-newkey",
                    "rsa:2048",
                    "-nodes",
                    "-keyout",
                    str(key_path),
                    "-out",
                    str(csr_path),
                    "-subj",
                    f"/O={CERT_SUBJECT_ORGANIZATION}/CN={common_name}",
                ]
            )
            _run_openssl(
                [
                    "openssl",
                    "x509",
                    "-req",
                    "-in",
                    str(csr_path),
                    "-CA",
                    str(ca_cert_path),
                    "-CAkey",
                    str(ca_key_path),
                    "-set_serial",
                    str(secrets.randbits(63)),
                    "-days",
                    str(validity_days),
                    "-sha256",
                    "-out",
                    str(cert_path),
                ]
            )
            _run_openssl(
                [
                    "openssl",
                    "pkcs12",
                    "-export",
                    "-in",
                    str(cert_path),
                    "-inkey",
                    str(key_path),
                    "-name",
                    common_name,
                    "-passout",
                    f"pass:{password}",
                    "-out",
                    str(p12_path),
                ]
            )

            if not p12_path.is_file():
                raise CertificateError(f"PKCS#12 keystore for {common_name} was not generated")

            return CertAndKey(
                cert=cert_path.read_bytes(),
                key=key_path.read_bytes(),
                keystore=p12_path.read_bytes(),
                password=password,
            )

    def expires_within(self, cert: bytes, seconds: int) -> bool:
        with tempfile.TemporaryDirectory() as tempdirname:
            cert_path = Path(tempdirname) / "leaf.crt"
            cert_path.write_bytes(cert)
            # -checkend exits non-zero when the certificate expires in time
            result = subprocess.run(
                args=[
                    "openssl",
                    "x509",
                    "-checkend",
                    str(seconds),
                    "-noout",
                    "-in",
                    str(cert_path),
                ],
                capture_output=True,
                check=False,
            )
            return result.returncode != 0


class ClusterCa:
    """
    The cluster CA as seen by one reconciliation.

    Wraps the rotation epoch (:class:`CaState`) together with the CA
    certificate and key needed to sign entity operator certificates.
    """

    def __init__(
        self,
        cluster: str,
        state: CaState,
        ca_cert: bytes | None,
        ca_key: bytes | None,
        validity_days: int = 365,
        renewal_days: int = 30,
        issuer: CertificateIssuer | None = None,
    ):
        self.cluster = cluster
        self.state = state
        self.ca_cert = ca_cert
        self.ca_key = ca_key
        self.validity_days = validity_days
        self.renewal_days = renewal_days
        self.issuer: CertificateIssuer = issuer or OpensslCertificateIssuer()

    @property
    def cert_generation(self) -> int:
        return self.state.cert_generation

    @property
    def key_generation(self) -> int:
        return self.state.key_generation

    def certs_removed(self) -> bool:
        """Whether old CA certificates were dropped during this reconciliation."""
        return self.state.certs_removed

    @classmethod
    def from_secrets(
        cls,
        cluster: str,
        cert_secret: dict[str, Any],
        key_secret: dict[str, Any],
        validity_days: int = 365,
        renewal_days: int = 30,
        certs_removed: bool = False,
        issuer: CertificateIssuer | None = None,
    ) -> "ClusterCa":
        """Build the CA from the ``<cluster>-cluster-ca-cert`` and ``<cluster>-cluster-ca`` secrets."""
        cert_data = cert_secret.get("data") or {}
        key_data = key_secret.get("data") or {}
        if CA_CERT_DATA_KEY not in cert_data or CA_KEY_DATA_KEY not in key_data:
            raise CertificateError(
                f"Cluster CA secrets of {cluster} do not contain "
                f"{CA_CERT_DATA_KEY} and {CA_KEY_DATA_KEY}"
            )

        state = CaState(
            cert_generation=_generation(cert_secret, ANNO_CA_CERT_GENERATION),
            key_generation=_generation(key_secret, ANNO_CA_KEY_GENERATION),
            certs_removed=certs_removed,
        )
        return cls(
            cluster=cluster,
            state=state,
            ca_cert=decode_secret_field(cert_data[CA_CERT_DATA_KEY]),
            ca_key=decode_secret_field(key_data[CA_KEY_DATA_KEY]),
            validity_days=validity_days,
            renewal_days=renewal_days,
            issuer=issuer,
        )

    def issue_certificate(self, common_name: str) -> CertAndKey:
        if self.ca_cert is None or self.ca_key is None:
            raise CertificateError(
                f"Cluster CA of {self.cluster} has no certificate or key to sign with"
            )
        logger.info(
            f"Issuing certificate {common_name} from cluster CA generation "
            f"{self.cert_generation}/{self.key_generation}"
        )
        return self.issuer.issue(
            self.ca_cert, self.ca_key, common_name, self.validity_days
        )

    def expires_soon(self, cert: bytes) -> bool:
        return self.issuer.expires_within(cert, self.renewal_days * SECONDS_PER_DAY)


def _generation(secret: dict[str, Any] | None, annotation: str) -> int:
    annotations = ((secret or {}).get("metadata") or {}).get("annotations") or {}
    value = annotations.get(annotation)
    try:
        return int(value) if value is not None else 0
    except ValueError:
        logger.warning(f"Ignoring non-numeric annotation {annotation}={value!r}")
        return 0


def _data_keys(prefix: str) -> tuple[str, str, str, str]:
    return (
        prefix + CERT_SUFFIX,
        prefix + KEY_SUFFIX,
        prefix + KEYSTORE_SUFFIX,
        prefix + PASSWORD_SUFFIX,
    )


def build_component_secret(
    cluster_ca: ClusterCa,
    namespace: str,
    name: str,
    common_name: str,
    labels: dict[str, str],
    existing: dict[str, Any] | None,
    maintenance_window_satisfied: bool,
    key_prefix: str = ENTITY_OPERATOR_CERT_KEY_PREFIX,
) -> dict[str, Any]:
    """
    Build the desired certificate secret for one manager.

    Existing material is copied unchanged unless it has to be replaced.
    Missing material is always issued. Material issued under an older CA
    generation, marked with the force-renew annotation or close to expiry is
    only replaced while a maintenance window is open.
    """
    cert_key, key_key, keystore_key, password_key = _data_keys(key_prefix)
    existing_data = ((existing or {}).get("data")) or {}
    has_material = all(
        k in existing_data for k in (cert_key, key_key, keystore_key, password_key)
    )

    if not has_material:
        reason = "missing"
    elif _generation(existing, ANNO_CA_CERT_GENERATION) != cluster_ca.cert_generation:
        reason = "CA certificate generation changed"
    elif _generation(existing, ANNO_CA_KEY_GENERATION) != cluster_ca.key_generation:
        reason = "CA key generation changed"
    elif ANNO_FORCE_RENEW in ((existing.get("metadata") or {}).get("annotations") or {}):
        reason = "renewal forced by annotation"
    elif cluster_ca.expires_soon(decode_secret_field(existing_data[cert_key])):
        reason = "certificate expires soon"
    else:
        reason = None

    if reason is not None and (reason == "missing" or maintenance_window_satisfied):
        logger.info(f"Issuing new certificate for secret {namespace}/{name}: {reason}")
        issued = cluster_ca.issue_certificate(common_name)
        data = {
            cert_key: b64(issued.cert),
            key_key: b64(issued.key),
            keystore_key: b64(issued.keystore),
            password_key: b64(issued.password),
        }
        annotations = {
            ANNO_CA_CERT_GENERATION: str(cluster_ca.cert_generation),
            ANNO_CA_KEY_GENERATION: str(cluster_ca.key_generation),
        }
    else:
        data = {
            k: existing_data[k] for k in (cert_key, key_key, keystore_key, password_key)
        }
        annotations = {
            ANNO_CA_CERT_GENERATION: str(_generation(existing, ANNO_CA_CERT_GENERATION)),
            ANNO_CA_KEY_GENERATION: str(_generation(existing, ANNO_CA_KEY_GENERATION)),
        }
        if reason is not None:
            logger.info(
                f"Certificate in secret {namespace}/{name} needs renewal ({reason}) "
                f"but no maintenance window is open, keeping existing material"
            )
            # A deferred forced renewal stays requested until it is carried out
            existing_annotations = (existing.get("metadata") or {}).get("annotations") or {}
            if ANNO_FORCE_RENEW in existing_annotations:
                annotations[ANNO_FORCE_RENEW] = existing_annotations[ANNO_FORCE_RENEW]

    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": dict(labels),
            "annotations": annotations,
        },
        "type": "Opaque",
        "data": data,
    }


def certificates_differ(
    previous: dict[str, Any] | None, current: dict[str, Any] | None
) -> bool:
    """
    Check whether certificate material present in both secrets changed.

    Only keys present in both secrets are compared, byte for byte. Keys that
    were merely added or removed do not count as a change. A previous secret
    without data is treated as different.
    """
    if previous is None:
        return False

    previous_data = previous.get("data")
    current_data = (current or {}).get("data") or {}
    if previous_data is None:
        return True

    for key, previous_value in previous_data.items():
        current_value = current_data.get(key)
        if previous_value is not None and current_value is not None:
            if previous_value != current_value:
                return True
    return False
