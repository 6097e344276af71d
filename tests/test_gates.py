import httpx

from gates.origin import is_allowed_country, is_allowed_origin
from gates.rate_limit import RateLimiter, client_address
from gates.verification import RecaptchaVerifier

ALLOWED = ("https://azyouthcount.org", "http://localhost:5173")


def test_origin_allow_list():
    assert is_allowed_origin("https://azyouthcount.org", None, ALLOWED)
    assert is_allowed_origin("https://AZYOUTHCOUNT.org/", None, ALLOWED)
    assert not is_allowed_origin("https://evil.example", "https://azyouthcount.org/book", ALLOWED)
    assert is_allowed_origin(None, "http://localhost:5173/register?x=1", ALLOWED)
    assert not is_allowed_origin(None, "not a url", ALLOWED)
    assert not is_allowed_origin(None, None, ALLOWED)


def test_geo_gate():
    assert is_allowed_country("US")
    assert is_allowed_country(None)
    assert is_allowed_country("")
    assert not is_allowed_country("CA")


def test_rate_limiter_window_and_eviction():
    now = [1000.0]
    limiter = RateLimiter(max_requests=2, window_seconds=60, clock=lambda: now[0])
    assert limiter.check("ip", consume=False).remaining == 2
    assert limiter.check("ip").remaining == 1
    assert limiter.check("ip").remaining == 0
    denied = limiter.check("ip")
    assert not denied.allowed
    assert denied.reset_at == 1060.0
    assert limiter.check("other").allowed
    assert limiter.tracked() == 2
    now[0] = 1061.0
    assert limiter.check("ip", consume=False).allowed
    assert limiter.tracked() == 0


def test_client_address():
    assert client_address("9.9.9.9, 10.0.0.1", "1.1.1.1") == "9.9.9.9"
    assert client_address(None, "1.1.1.1") == "1.1.1.1"
    assert client_address("", None) == "unknown"


def test_verifier_not_configured_passes():
    verifier = RecaptchaVerifier(None)
    assert verifier.verify(None)
    assert verifier.verify_scored("anything") is None
    assert verifier.passes(None)


def test_verifier_primary_and_scored(siteverify):
    client, calls = siteverify
    verifier = RecaptchaVerifier("v2", "v3", min_score=0.5, client=client)
    assert not verifier.verify(None)
    assert verifier.verify("good")
    assert not verifier.verify("bad")
    assert verifier.verify_scored("score-0.9") == 0.9
    assert verifier.passes("good", "score-0.7")
    assert not verifier.passes("good", "score-0.3")
    assert not verifier.passes("good", None)
    assert {c["secret"] for c in calls} == {"v2", "v3"}


def test_scored_check_soft_fails_on_network_error():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    ok_primary = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"success": True, "score": 0.9})))
    verifier = RecaptchaVerifier("v2", "v3", client=ok_primary)
    broken = RecaptchaVerifier("v2", "v3", client=httpx.Client(transport=httpx.MockTransport(handler)))
    assert verifier.passes("tok", "tok")
    assert broken.verify_scored("tok") is None
    assert not broken.verify("tok")
