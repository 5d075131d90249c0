from typing import Dict, Optional
import logging

import httpx

logger = logging.getLogger(__name__)


class StaticProfileStore:
    """Provider capabilities from a fixed mapping."""

    def __init__(self, profiles: Optional[Dict[str, dict]] = None):
        self.profiles = profiles or {}

    async def get_provider_capabilities(self, provider_id: str) -> dict:
        return self.profiles.get(provider_id, {})


class HttpProfileStore:
    """Reads provider capabilities from the profile service."""

    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def get_provider_capabilities(self, provider_id: str) -> dict:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(f"{self.base_url}/doctor/{provider_id}")

        if response.status_code == 404:
            return {}
        response.raise_for_status()

        profile = response.json()
        # The profile service has used both keys
        specialty = profile.get("specialization") or profile.get("specialty")
        return {**profile, "specialty": specialty}


def specialty_matches(capabilities: dict, specialty: Optional[str]) -> bool:
    if not specialty:
        return True
    provider_specialty = capabilities.get("specialty") or ""
    return provider_specialty.lower() == specialty.lower()
