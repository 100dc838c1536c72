# tests/test_signature.py
import time

import pytest

from oauth_provider.core.config import settings
from oauth_provider.core.errors import (
    InvalidSignature, MalformedRequest, StaleTimestamp, UnsupportedMethod,
)
from oauth_provider.core.signature import (
    OAuthRequest, SignatureMethod, check_protocol_params, collect_request,
    sign, signature_base_string, verify_signature,
)
from oauth_provider.db.models import Consumer

from oauth_helpers import authorization_header, oauth_params

# Ejemplo del apéndice A.5 de OAuth Core 1.0
PHOTOS_PARAMS = [
    ("file", "vacation.jpg"),
    ("size", "original"),
    ("oauth_consumer_key", "dpf43f3p2l4k3l03"),
    ("oauth_token", "nnch734d00sl2jdk"),
    ("oauth_signature_method", "HMAC-SHA1"),
    ("oauth_timestamp", "1191242096"),
    ("oauth_nonce", "kllo9940pd9333jh"),
    ("oauth_version", "1.0"),
]
PHOTOS_BASE_STRING = (
    "GET&http%3A%2F%2Fphotos.example.net%2Fphotos&file%3Dvacation.jpg%26"
    "oauth_consumer_key%3Ddpf43f3p2l4k3l03%26oauth_nonce%3Dkllo9940pd9333jh%26"
    "oauth_signature_method%3DHMAC-SHA1%26oauth_timestamp%3D1191242096%26"
    "oauth_token%3Dnnch734d00sl2jdk%26oauth_version%3D1.0%26size%3Doriginal"
)


def _consumer(rsa_public_key=None):
    return Consumer(key="foo", secret="bar", name="Test Consumer", rsa_public_key=rsa_public_key)


def _request(method="HMAC-SHA1", **extra):
    params = oauth_params(method=method, **extra)
    return OAuthRequest("POST", "http://provider.example/oauth/request_token", list(params.items()))


def _signed(request, consumer_secret="bar", token_secret="", rsa_key=None):
    request.params.append(("oauth_signature", sign(request, consumer_secret, token_secret, rsa_key)))
    return request


def test_base_string_matches_reference_example():
    req = OAuthRequest("GET", "http://photos.example.net/photos", list(PHOTOS_PARAMS))
    assert signature_base_string(req) == PHOTOS_BASE_STRING


def test_hmac_sha1_matches_reference_signature():
    req = OAuthRequest("GET", "http://photos.example.net/photos", list(PHOTOS_PARAMS))
    assert sign(req, "kd94hf93k423kf44", "pfkkdhi9sl3r4s00") == "tR3+Ty81lMeYAr/Fid0kMTYa/WM="


def test_base_string_ignores_query_fragment_and_default_port():
    params = [("oauth_nonce", "n"), ("a", "1")]
    one = OAuthRequest("post", "HTTP://Provider.Example:80/oauth/x?ignored=1#frag", params)
    two = OAuthRequest("POST", "http://provider.example/oauth/x", params)
    assert signature_base_string(one) == signature_base_string(two)
    assert signature_base_string(two).startswith("POST&http%3A%2F%2Fprovider.example%2Foauth%2Fx&")


def test_base_string_keeps_non_default_port():
    req = OAuthRequest("GET", "https://provider.example:8443/oauth", [])
    assert signature_base_string(req) == "GET&https%3A%2F%2Fprovider.example%3A8443%2Foauth&"


def test_parameters_sorted_by_key_then_value_and_signature_excluded():
    req = OAuthRequest("GET", "http://provider.example/r", [
        ("b", "2"), ("a", "z"), ("a", "y"), ("oauth_signature", "nope"), ("c", "~ -"),
    ])
    # a=y&a=z&b=2&c=~%20-  codificado otra vez dentro de la base string
    assert signature_base_string(req).endswith("&a%3Dy%26a%3Dz%26b%3D2%26c%3D~%2520-")


def test_plaintext_signature_is_escaped_secrets():
    req = _request(method="PLAINTEXT")
    assert sign(req, "bar", "") == "bar&"
    assert sign(req, "b&r", "s e") == "b%26r&s%20e"


@pytest.mark.parametrize("method", ["PLAINTEXT", "HMAC-SHA1", "RSA-SHA1"])
def test_verify_accepts_own_signatures(method, rsa_private_pem, rsa_public_pem):
    consumer = _consumer(rsa_public_pem)
    req = _signed(_request(method=method, token="tok"), token_secret="toksecret", rsa_key=rsa_private_pem)
    verify_signature(req, consumer, "toksecret")


@pytest.mark.parametrize("method", ["HMAC-SHA1", "RSA-SHA1"])
def test_mutated_parameter_fails(method, rsa_private_pem, rsa_public_pem):
    consumer = _consumer(rsa_public_pem)
    req = _signed(_request(method=method, extra_param="hello"), rsa_key=rsa_private_pem)
    req.params = [(k, "hellp" if k == "extra_param" else v) for k, v in req.params]
    with pytest.raises(InvalidSignature):
        verify_signature(req, consumer)


def test_wrong_secrets_fail():
    consumer = _consumer()
    req = _signed(_request(), consumer_secret="baz")
    with pytest.raises(InvalidSignature):
        verify_signature(req, consumer)

    req = _signed(_request(method="PLAINTEXT", token="t"), token_secret="right")
    with pytest.raises(InvalidSignature) as exc:
        verify_signature(req, consumer, "wrong")
    assert exc.value.consumer_key == "foo"
    assert exc.value.status_code == 401


def test_rsa_without_public_key_is_unsupported(rsa_private_pem):
    req = _signed(_request(method="RSA-SHA1"), rsa_key=rsa_private_pem)
    with pytest.raises(UnsupportedMethod) as exc:
        verify_signature(req, _consumer(rsa_public_key=None))
    assert exc.value.status_code == 401
    assert exc.value.consumer_key == "foo"


def test_rsa_with_garbage_key_is_unsupported(rsa_private_pem):
    req = _signed(_request(method="RSA-SHA1"), rsa_key=rsa_private_pem)
    with pytest.raises(UnsupportedMethod):
        verify_signature(req, _consumer(rsa_public_key="-----BEGIN PUBLIC KEY-----\nnope\n-----END PUBLIC KEY-----\n"))


def test_rsa_signature_not_base64_is_invalid(rsa_public_pem):
    req = _request(method="RSA-SHA1", oauth_signature="%%%not-base64%%%")
    with pytest.raises(InvalidSignature):
        verify_signature(req, _consumer(rsa_public_pem))


def test_signing_rsa_needs_private_key():
    with pytest.raises(UnsupportedMethod):
        sign(_request(method="RSA-SHA1"), "bar")


def test_unknown_signature_method_is_malformed():
    req = _request(method="HMAC-MD5", oauth_signature="x")
    with pytest.raises(MalformedRequest):
        check_protocol_params(req)


@pytest.mark.parametrize("missing", [
    "oauth_consumer_key", "oauth_signature_method", "oauth_signature",
    "oauth_timestamp", "oauth_nonce", "oauth_version",
])
def test_missing_required_parameter(missing):
    req = _request(oauth_signature="x")
    req.params = [(k, v) for k, v in req.params if k != missing]
    with pytest.raises(MalformedRequest) as exc:
        check_protocol_params(req)
    assert missing in str(exc.value)


def test_version_must_be_1_0():
    req = _request(oauth_signature="x", oauth_version="2.0")
    with pytest.raises(MalformedRequest):
        check_protocol_params(req)


def test_repeated_protocol_parameter_is_malformed():
    req = _request(oauth_signature="x")
    req.params.append(("oauth_nonce", "another"))
    with pytest.raises(MalformedRequest):
        check_protocol_params(req)


def test_timestamp_must_be_integer():
    req = _request(oauth_signature="x", timestamp="yesterday")
    with pytest.raises(MalformedRequest):
        check_protocol_params(req)


def test_timestamp_window():
    now = int(time.time())
    settings.timestamp_tolerance = 60

    ok = _request(oauth_signature="x", timestamp=now - 60)
    assert check_protocol_params(ok, now=now) is SignatureMethod.HMAC_SHA1

    for ts in (now - 61, now + 61, 0):
        with pytest.raises(StaleTimestamp):
            check_protocol_params(_request(oauth_signature="x", timestamp=ts), now=now)


def test_collect_from_header_body_and_query_agree():
    params = oauth_params(method="HMAC-SHA1", oauth_signature="abc+/=")
    url = "http://provider.example/oauth/request_token"

    from_header = collect_request("POST", url, headers={"Authorization": authorization_header(params)})
    from_body = collect_request(
        "POST", url,
        body="&".join(f"{k}={v.replace('+', '%2B').replace('/', '%2F').replace('=', '%3D')}"
                      for k, v in params.items()),
        content_type="application/x-www-form-urlencoded; charset=utf-8",
    )
    from_query = collect_request("POST", url + "?" + "&".join(
        f"{k}={v.replace('+', '%2B').replace('/', '%2F').replace('=', '%3D')}" for k, v in params.items()))

    for req in (from_header, from_body, from_query):
        assert dict(req.params) == params
        assert req.signature == "abc+/="
    assert signature_base_string(from_header) == signature_base_string(from_body) == signature_base_string(from_query)


def test_collect_ignores_non_form_body_and_other_auth_schemes():
    req = collect_request(
        "POST", "http://provider.example/r",
        headers={"Authorization": "Basic Zm9vOmJhcg=="},
        body='{"oauth_consumer_key": "foo"}',
        content_type="application/json",
    )
    assert req.params == []
    assert not req.is_oauth


def test_collect_rejects_broken_authorization_header():
    with pytest.raises(MalformedRequest):
        collect_request("POST", "http://provider.example/r", headers={"Authorization": "OAuth garbage"})


def test_public_base_url_replaces_scheme_and_host():
    settings.public_base_url = "https://api.example.org"
    req = collect_request("GET", "http://10.0.0.5:8000/oauth/whoami?x=1")
    assert req.uri == "https://api.example.org/oauth/whoami?x=1"
    assert signature_base_string(req).startswith("GET&https%3A%2F%2Fapi.example.org%2Foauth%2Fwhoami&")
