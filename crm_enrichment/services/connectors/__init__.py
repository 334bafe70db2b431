from __future__ import annotations

from typing import Callable, Dict, List

from .attio import AttioClient

# provider name -> factory(api_key)
_PROVIDERS: Dict[str, Callable[[str], AttioClient]] = {
    "attio": AttioClient,
}

SUPPORTED_PROVIDERS: List[str] = list(_PROVIDERS)


def get_crm_client(provider: str, api_key: str) -> AttioClient:
    factory = _PROVIDERS.get(provider)
    if factory is None:
        raise ValueError(f"Unknown CRM provider: {provider}")
    return factory(api_key)
