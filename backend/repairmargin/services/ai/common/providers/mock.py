"""Mock provider: deterministic valuation answer for tests and local runs."""

from __future__ import annotations

import json
import time

from .base import BaseProvider, ProviderResult

# Mirrors the FORD PUMA sample valuation (Audatex, 18 UT + 10 UT).
MOCK_VALUATION = {
    "vehicle": {
        "license_plate": "6453MLT",
        "vin": "WF02XXERK2PJ11480",
        "manufacturer": "FORD",
        "model": "PUMA",
        "internal_reference": "103889801331",
        "valuation_system": "AUDATEX",
        "hourly_price": 51.90,
        "bodywork_hourly_price": 51.90,
        "paint_hourly_price": 51.90,
        "valuation_date": "04/10/2024",
    },
    "financial": {
        "spare_parts_amount": 1782.92,
        "spare_parts_count": 20,
        "bodywork_quantity": 18,
        "bodywork_amount": 679.89,
        "paint_quantity": 10,
        "paint_amount": 272.48,
        "paint_material_amount": 213.20,
        "subtotal": 2948.49,
        "tax_rate": 21,
        "tax_amount": 619.18,
        "total_with_tax": 3567.67,
        "unit_family": "UT",
    },
    "confidence": 0.9,
    "warnings": [],
}


class MockProvider(BaseProvider):
    name = "mock"

    async def generate(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        model: str = "",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout_seconds: float = 60.0,
    ) -> ProviderResult:
        t0 = time.monotonic()
        text = json.dumps(MOCK_VALUATION)
        elapsed = (time.monotonic() - t0) * 1000
        return ProviderResult(
            raw_text=text,
            model=model or "mock-v1",
            provider=self.name,
            prompt_tokens=len(prompt.split()),
            completion_tokens=len(text.split()),
            latency_ms=round(elapsed, 2),
        )
