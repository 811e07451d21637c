# services/recaptcha_service.py
import logging
from typing import Optional

import httpx

from feednana.config import Settings, get_settings

logger = logging.getLogger(__name__)

ASSESSMENT_URL = "https://recaptchaenterprise.googleapis.com/v1/projects/{project_id}/assessments"


class RecaptchaService:
    def __init__(self, settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def required(self) -> bool:
        return self.settings.recaptcha_required

    async def verify(self, token: Optional[str]) -> bool:
        """Score a token with reCAPTCHA Enterprise. Always true when no api key is configured."""
        if not self.required:
            return True
        if not token:
            return False

        url = ASSESSMENT_URL.format(project_id=self.settings.recaptcha_project_id)
        body = {
            "event": {
                "token": token,
                "siteKey": self.settings.recaptcha_site_key,
                "expectedAction": "login",
            }
        }
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                resp = await client.post(url, params={"key": self.settings.recaptcha_api_key}, json=body)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"reCAPTCHA verification error: {e}")
            return False

        score = (data.get("riskAnalysis") or {}).get("score")
        return score is not None and score >= self.settings.recaptcha_min_score
