from datetime import timedelta

import pytest
import requests
from asn1crypto import ocsp, pem
from cryptography import x509 as cx509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509 import ocsp as cocsp

from pdftrust import errors
from pdftrust.fetchers.api import DEFAULT_USER_AGENT
from pdftrust.fetchers.requests_clients import (
    RequestsCrlClient,
    RequestsOcspClient,
)

from .pki import ROOT, SIGNER, VALIDATION_TIME, days, issue, make_crl

CRL_URL = 'http://crl.example.com/root.crl'
OCSP_URL = 'http://ocsp.example.com/ocsp'

ONLINE_SIGNER = issue(
    'Online Signer',
    ROOT,
    serial=5001,
    key_usage=('digital_signature',),
    crl_url=CRL_URL,
    ocsp_url=OCSP_URL,
)
LDAP_SIGNER = issue(
    'LDAP Signer',
    ROOT,
    serial=5002,
    key_usage=('digital_signature',),
    crl_url='ldap://ldap.example.com/cn=Test%20Root',
)


def _root_crl():
    return make_crl(
        ROOT,
        this_update=VALIDATION_TIME - timedelta(hours=1),
        next_update=VALIDATION_TIME + days(7),
    ).dump()


def _ocsp_response(nonce=None, status=cocsp.OCSPCertStatus.GOOD):
    builder = (
        cocsp.OCSPResponseBuilder()
        .add_response(
            cert=ONLINE_SIGNER.crypto_cert,
            issuer=ROOT.crypto_cert,
            algorithm=hashes.SHA1(),
            cert_status=status,
            this_update=VALIDATION_TIME.replace(tzinfo=None),
            next_update=None,
            revocation_time=None,
            revocation_reason=None,
        )
        .responder_id(cocsp.OCSPResponderEncoding.HASH, ROOT.crypto_cert)
    )
    if nonce is not None:
        builder = builder.add_extension(cx509.OCSPNonce(nonce), critical=False)
    response = builder.sign(ROOT.key, hashes.SHA256())
    return response.public_bytes(serialization.Encoding.DER)


def test_crl_download(requests_mock):
    crl_der = _root_crl()
    requests_mock.get(CRL_URL, content=crl_der)
    client = RequestsCrlClient(user_agent='test-agent')
    assert list(client.get_encoded(ONLINE_SIGNER.cert, ROOT.cert)) == [crl_der]
    # second lookup comes from the cache
    assert list(client.get_encoded(ONLINE_SIGNER.cert, None)) == [crl_der]
    (request,) = requests_mock.request_history
    assert (request.method, request.url) == ('GET', CRL_URL)
    assert request.headers['User-Agent'] == 'test-agent'
    assert request.headers['Accept'] == 'application/pkix-crl'


def test_crl_download_pem(requests_mock):
    crl_der = _root_crl()
    requests_mock.get(CRL_URL, content=pem.armor('X509 CRL', crl_der))
    client = RequestsCrlClient()
    assert client.download(CRL_URL) == [crl_der]


@pytest.mark.parametrize(
    'response',
    [{'status_code': 404}, {'exc': requests.ConnectionError}],
)
def test_crl_download_failure(requests_mock, response):
    requests_mock.get(CRL_URL, **response)
    client = RequestsCrlClient()
    with pytest.raises(errors.CRLFetchError):
        client.download(CRL_URL)
    assert list(client.get_encoded(ONLINE_SIGNER.cert, ROOT.cert)) == []


def test_crl_non_http_locations_ignored(requests_mock):
    client = RequestsCrlClient()
    assert client.distribution_point_urls(LDAP_SIGNER.cert) == []
    assert list(client.get_encoded(LDAP_SIGNER.cert, ROOT.cert)) == []
    assert list(client.get_encoded(SIGNER.cert, ROOT.cert)) == []
    assert requests_mock.call_count == 0


def test_ocsp_query(requests_mock):
    response_der = _ocsp_response()
    requests_mock.post(OCSP_URL, content=response_der)
    client = RequestsOcspClient()
    assert client.get_encoded(ONLINE_SIGNER.cert, ROOT.cert) == response_der

    (http_request,) = requests_mock.request_history
    assert (http_request.method, http_request.url) == ('POST', OCSP_URL)
    assert http_request.headers['Content-Type'] == 'application/ocsp-request'
    assert http_request.headers['User-Agent'] == DEFAULT_USER_AGENT
    request = ocsp.OCSPRequest.load(http_request.body)
    (single,) = request['tbs_request']['request_list']
    cert_id = single['req_cert']
    assert cert_id['serial_number'].native == ONLINE_SIGNER.cert.serial_number
    assert cert_id['hash_algorithm']['algorithm'].native == 'sha1'
    assert request.nonce_value is not None


def test_ocsp_request_options():
    client = RequestsOcspClient(certid_hash_algo='sha256', request_nonces=False)
    request = client.build_request(ONLINE_SIGNER.cert, ROOT.cert)
    (single,) = request['tbs_request']['request_list']
    cert_id = single['req_cert']
    assert cert_id['hash_algorithm']['algorithm'].native == 'sha256'
    assert cert_id['issuer_key_hash'].native == ROOT.cert.public_key.sha256
    assert request.nonce_value is None


def test_ocsp_bad_hash_algorithm():
    with pytest.raises(ValueError):
        RequestsOcspClient(certid_hash_algo='md5')


@pytest.mark.parametrize(
    'response',
    [
        {'status_code': 500},
        {'content': b'\x00\x01\x02'},
        {
            'content': ocsp.OCSPResponse(
                {'response_status': 'try_later'}
            ).dump()
        },
        {'exc': requests.Timeout},
    ],
)
def test_ocsp_query_failure(requests_mock, response):
    requests_mock.post(OCSP_URL, **response)
    client = RequestsOcspClient()
    assert client.get_encoded(ONLINE_SIGNER.cert, ROOT.cert) is None
    assert requests_mock.call_count == 1


def test_ocsp_nonce_mismatch():
    client = RequestsOcspClient()
    request = client.build_request(ONLINE_SIGNER.cert, ROOT.cert)
    response_der = _ocsp_response(nonce=b'\x01' * 16)
    with pytest.raises(errors.OCSPFetchError, match='nonce'):
        client.check_response(response_der, request, OCSP_URL)


def test_ocsp_response_without_nonce_accepted():
    client = RequestsOcspClient()
    request = client.build_request(ONLINE_SIGNER.cert, ROOT.cert)
    response = client.check_response(_ocsp_response(), request, OCSP_URL)
    assert response['response_status'].native == 'successful'


def test_ocsp_nothing_to_query(requests_mock):
    client = RequestsOcspClient()
    assert client.get_encoded(ONLINE_SIGNER.cert, None) is None
    assert client.get_encoded(SIGNER.cert, ROOT.cert) is None
    assert requests_mock.call_count == 0
