from pdftrust.registry import CertificateStore, TrustedCertificatesStore
from pdftrust.retriever import IssuingCertificateRetriever

from .pki import (
    INTERMEDIATE,
    INTERMEDIATE_SIGNER,
    OCSP_RESPONDER,
    ROGUE_ROOT,
    ROOT,
    SIGNER,
    TSA,
    VALIDATION_TIME,
    days,
    issue,
    make_basic_ocsp_response,
    make_crl,
)

IMPOSTER_ROOT = issue(
    'Test Root',
    None,
    serial=1,
    ca=True,
    key_usage=('key_cert_sign', 'crl_sign'),
)


def test_store_deduplicates():
    store = CertificateStore.from_certs([ROOT.cert, SIGNER.cert])
    assert not store.register(ROOT.cert)
    assert store.register(INTERMEDIATE.cert)
    assert len(store) == 3
    assert SIGNER.cert in store
    assert TSA.cert not in store


def test_store_retrieve_by_name():
    store = CertificateStore.from_certs([ROOT.cert, IMPOSTER_ROOT.cert])
    assert len(store.retrieve_by_name(ROOT.cert.subject)) == 2
    assert store.retrieve_by_name(ROGUE_ROOT.cert.subject) == []


def test_trust_classifications_are_independent():
    store = TrustedCertificatesStore()
    store.add_crl_trusted_certificates([ROOT.cert])
    store.add_timestamp_trusted_certificates([TSA.cert])
    assert store.is_certificate_trusted_for_crl(ROOT.cert)
    assert not store.is_certificate_generally_trusted(ROOT.cert)
    assert not store.is_certificate_trusted_for_ocsp(ROOT.cert)
    assert not store.is_certificate_trusted_for_ca(ROOT.cert)
    assert store.is_certificate_trusted_for_timestamp(TSA.cert)
    assert not store.is_certificate_trusted_for_crl(TSA.cert)
    assert ROOT.cert in store
    (by_name,) = store.get_known_certificates_by_name(TSA.cert.subject)
    assert by_name.dump() == TSA.cert.dump()


def test_is_certificate_trusted():
    retriever = IssuingCertificateRetriever()
    retriever.add_trusted_certificates([ROOT.cert])
    retriever.add_known_certificates([INTERMEDIATE.cert])
    assert retriever.is_certificate_trusted(ROOT.cert)
    # known certificates only complete chains
    assert not retriever.is_certificate_trusted(INTERMEDIATE.cert)


def test_set_trusted_certificates_keeps_other_classifications():
    retriever = IssuingCertificateRetriever()
    retriever.add_trusted_certificates([ROOT.cert])
    store = retriever.get_trusted_certificates_store()
    store.add_timestamp_trusted_certificates([TSA.cert])
    retriever.set_trusted_certificates([ROGUE_ROOT.cert])

    assert retriever.is_certificate_trusted(ROGUE_ROOT.cert)
    assert not retriever.is_certificate_trusted(ROOT.cert)
    store = retriever.get_trusted_certificates_store()
    assert store.is_certificate_trusted_for_timestamp(TSA.cert)


def test_issuer_with_verifying_key_preferred():
    retriever = IssuingCertificateRetriever()
    retriever.add_known_certificates([IMPOSTER_ROOT.cert])
    retriever.add_trusted_certificates([ROOT.cert])
    issuer = retriever.retrieve_issuer_certificate(SIGNER.cert)
    assert issuer.dump() == ROOT.cert.dump()


def test_issuer_name_match_as_fallback():
    retriever = IssuingCertificateRetriever()
    retriever.add_known_certificates([IMPOSTER_ROOT.cert])
    issuer = retriever.retrieve_issuer_certificate(SIGNER.cert)
    assert issuer.dump() == IMPOSTER_ROOT.cert.dump()


def test_issuer_not_found():
    retriever = IssuingCertificateRetriever()
    retriever.add_trusted_certificates([ROGUE_ROOT.cert])
    assert retriever.retrieve_issuer_certificate(SIGNER.cert) is None


def test_crl_issuer():
    retriever = IssuingCertificateRetriever()
    retriever.add_known_certificates([IMPOSTER_ROOT.cert, ROOT.cert])
    certificate_list = make_crl(
        ROOT,
        this_update=VALIDATION_TIME - days(1),
        next_update=VALIDATION_TIME + days(6),
    )
    issuer = retriever.retrieve_crl_issuer_certificate(certificate_list)
    assert issuer.dump() == ROOT.cert.dump()


def test_ocsp_responder_candidates():
    retriever = IssuingCertificateRetriever()
    retriever.add_trusted_certificates([ROOT.cert])
    retriever.get_trusted_certificates_store().add_ocsp_trusted_certificates(
        [OCSP_RESPONDER.cert]
    )
    basic_response = make_basic_ocsp_response(
        SIGNER,
        ROOT,
        this_update=VALIDATION_TIME - days(1),
        next_update=VALIDATION_TIME + days(6),
        responder=OCSP_RESPONDER,
        embed_responder=True,
    )
    candidates = retriever.retrieve_ocsp_responder_candidates(basic_response)
    # the embedded responder is not repeated
    assert [c.dump() for c in candidates] == [
        OCSP_RESPONDER.cert.dump(),
        ROOT.cert.dump(),
    ]


def test_retrieve_missing_certificates():
    retriever = IssuingCertificateRetriever()
    retriever.add_trusted_certificates([ROOT.cert])
    chain = retriever.retrieve_missing_certificates(
        [INTERMEDIATE.cert, INTERMEDIATE_SIGNER.cert]
    )
    assert [c.subject.native['common_name'] for c in chain] == [
        'Intermediate Signer',
        'Test Intermediate',
        'Test Root',
    ]
    assert retriever.retrieve_missing_certificates([]) == []


def test_share_common_root():
    retriever = IssuingCertificateRetriever()
    retriever.add_trusted_certificates([ROOT.cert])
    retriever.add_known_certificates([INTERMEDIATE.cert])
    assert retriever.share_common_root(INTERMEDIATE_SIGNER.cert, SIGNER.cert)
    assert not retriever.share_common_root(SIGNER.cert, ROGUE_ROOT.cert)
