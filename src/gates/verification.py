from __future__ import annotations
from typing import Optional
import logging
import httpx

logger = logging.getLogger(__name__)

SITEVERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class RecaptchaVerifier:
    """Bot-mitigation gate backed by reCAPTCHA siteverify.

    ``verify`` is the primary (checkbox) check. ``verify_scored`` is the
    secondary score check: ``None`` when no v3 secret is configured or the
    service could not be reached, otherwise the score in [0, 1].
    """

    def __init__(
        self,
        secret: Optional[str],
        v3_secret: Optional[str] = None,
        min_score: float = 0.5,
        *,
        client: Optional[httpx.Client] = None,
        timeout: float = 10.0,
    ):
        self.secret = secret
        self.v3_secret = v3_secret
        self.min_score = min_score
        self._client = client
        self._timeout = timeout

    def _siteverify(self, secret: str, token: str) -> dict:
        form = {"secret": secret, "response": token}
        if self._client is not None:
            resp = self._client.post(SITEVERIFY_URL, data=form)
        else:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.post(SITEVERIFY_URL, data=form)
        resp.raise_for_status()
        return resp.json()

    def verify(self, token: Optional[str]) -> bool:
        if not self.secret:
            # gate not configured (local development)
            return True
        if not token:
            return False
        try:
            data = self._siteverify(self.secret, token)
        except (httpx.HTTPError, ValueError):
            logger.exception("reCAPTCHA verification error")
            return False
        return bool(data.get("success"))

    def verify_scored(self, token: Optional[str]) -> Optional[float]:
        if not self.v3_secret:
            return None
        if not token:
            return 0.0
        try:
            data = self._siteverify(self.v3_secret, token)
        except (httpx.HTTPError, ValueError):
            logger.warning("reCAPTCHA score check unavailable; skipping", exc_info=True)
            return None
        if not data.get("success"):
            return 0.0
        try:
            return float(data.get("score", 0.0))
        except (TypeError, ValueError):
            return 0.0

    def passes(self, token: Optional[str], scored_token: Optional[str] = None) -> bool:
        if not self.verify(token):
            return False
        score = self.verify_scored(scored_token)
        if score is not None and score < self.min_score:
            logger.info("reCAPTCHA score %.2f below threshold %.2f", score, self.min_score)
            return False
        return True
