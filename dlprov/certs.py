from __future__ import annotations

import datetime
import os
import socket
import tempfile

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from .errors import CertificateGenerationError
from .eventlog import log_event

CERT_NAME = "nginx.crt"
KEY_NAME = "nginx.key"

NGINX_CONF = """\
worker_processes auto;

events {
    worker_connections 1024;
}

http {
    client_max_body_size 100M;

    server {
        listen 80;
        server_name _;
        return 301 https://$host$request_uri;
    }

    server {
        listen 443 ssl;
        server_name _;

        ssl_certificate     /etc/nginx/certs/nginx.crt;
        ssl_certificate_key /etc/nginx/certs/nginx.key;

        location /api/ {
            proxy_pass http://datalens-api:8000/;
            proxy_set_header Host $host;
            proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
            proxy_set_header X-Forwarded-Proto https;
        }

        location /ui/ {
            proxy_pass http://datalens-ui:8501/;
            proxy_http_version 1.1;
            proxy_set_header Upgrade $http_upgrade;
            proxy_set_header Connection "upgrade";
            proxy_set_header Host $host;
        }

        location / {
            proxy_pass http://react-app-dev:3000;
            proxy_http_version 1.1;
            proxy_set_header Upgrade $http_upgrade;
            proxy_set_header Connection "upgrade";
            proxy_set_header Host $host;
        }
    }
}
"""


def _write_atomic(path: str, data: bytes, mode: int) -> None:
    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=parent, prefix=".tmp-")
    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except OSError:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def generate_self_signed(cert_dir: str, common_name: str | None = None, days: int = 365) -> tuple[str, str]:
    """Write a fresh RSA-2048 self-signed pair; returns (cert_path, key_path).

    The key file is readable by its owner only.
    """
    cn = common_name or socket.gethostname()
    cert_path = os.path.join(cert_dir, CERT_NAME)
    key_path = os.path.join(cert_dir, KEY_NAME)
    try:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + datetime.timedelta(days=days))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(cn)]), critical=False)
            .sign(key, hashes.SHA256())
        )
        key_pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
        _write_atomic(key_path, key_pem, 0o600)
        _write_atomic(cert_path, cert.public_bytes(serialization.Encoding.PEM), 0o644)
    except (ValueError, OSError) as e:
        raise CertificateGenerationError(f"Could not generate certificate: {e}", resource=cert_dir) from e

    log_event("INFO", f"Generated self-signed certificate for CN={cn}", resource=cert_path)
    return cert_path, key_path


def write_nginx_conf(path: str) -> str:
    try:
        _write_atomic(path, NGINX_CONF.encode("utf-8"), 0o644)
    except OSError as e:
        raise CertificateGenerationError(f"Could not write nginx.conf: {e}", resource=path) from e
    log_event("INFO", "Wrote reverse proxy configuration", resource=path)
    return path
