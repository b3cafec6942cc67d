from __future__ import annotations

import pytest

from idea_explorer.errors import ValidationFault
from idea_explorer.urltools import host, is_safe_destination, validate_destination


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/webhook",
        "http://hooks.acme.io:8080/cb?x=1",
        "https://8.8.8.8/hook",
        "https://[2606:4700::1111]/hook",
    ],
)
def test_accepts_public_destinations(url):
    assert is_safe_destination(url)
    assert validate_destination(url) == url


@pytest.mark.parametrize(
    "url",
    [
        "http://10.0.0.5/hook",
        "http://127.0.0.1/hook",
        "http://172.16.3.4/hook",
        "http://192.168.1.1/hook",
        "http://169.254.169.254/latest/meta-data",
        "http://100.64.0.1/hook",
        "http://0.0.0.0/hook",
        "http://010.0.0.1/hook",
        "http://999.1.1.1/hook",
        "http://[::1]/hook",
        "http://[fd00::1]/hook",
        "http://[fe80::1]/hook",
        "http://[::ffff:127.0.0.1]/hook",
        "http://[::ffff:10.0.0.1]/hook",
        "http://localhost:3000/hook",
        "http://api.localhost/hook",
        "http://printer/hook",
        "http://nas.local/hook",
        "http://db.internal/hook",
        "ftp://example.com/file",
        "file:///etc/passwd",
        "not a url",
        "",
    ],
)
def test_rejects_private_and_malformed_destinations(url):
    assert not is_safe_destination(url)
    with pytest.raises(ValidationFault):
        validate_destination(url)


def test_host():
    assert host("https://Example.com:8443/a") == "example.com"
    assert host("") == ""
