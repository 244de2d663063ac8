import os
import stat

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID

from dlprov.certs import generate_self_signed, write_nginx_conf
from dlprov.errors import RunLockError
from dlprov.lock import run_lock


def test_self_signed_pair(tmp_path):
    cert_path, key_path = generate_self_signed(str(tmp_path / "certs"), common_name="datalensvm", days=30)

    assert stat.S_IMODE(os.stat(key_path).st_mode) == 0o600
    cert = x509.load_pem_x509_certificate(open(cert_path, "rb").read())
    cn = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value
    assert cn == "datalensvm"
    assert cert.issuer == cert.subject


def test_regenerating_replaces_pair(tmp_path):
    d = str(tmp_path / "certs")
    first, _ = generate_self_signed(d, common_name="a")
    before = open(first, "rb").read()
    generate_self_signed(d, common_name="a")
    assert open(first, "rb").read() != before
    assert sorted(os.listdir(d)) == ["nginx.crt", "nginx.key"]


def test_nginx_conf_routes_to_services(tmp_path):
    path = write_nginx_conf(str(tmp_path / "nginx" / "nginx.conf"))
    text = open(path).read()
    for upstream in ("datalens-api:8000", "datalens-ui:8501", "react-app-dev:3000"):
        assert upstream in text
    assert "/etc/nginx/certs/nginx.key" in text


def test_second_run_lock_is_refused(tmp_path):
    path = str(tmp_path / ".provision.lock")
    with run_lock(path):
        with pytest.raises(RunLockError):
            with run_lock(path):
                pass
    # released afterwards
    with run_lock(path):
        pass
