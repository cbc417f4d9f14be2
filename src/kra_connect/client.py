"""High-level client for the KRA GavaConnect API.

Usage example:
    from kra_connect.client import KraClient
    from kra_connect.config import KraConfig

    client = KraClient.from_config(KraConfig.from_env())
    details = client.verify_pin("P051234567A")
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Self

from .application.pipeline import BatchItem, RequestDescriptor, RequestPipeline
from .config import KraConfig
from .infrastructure.cache import ResponseCache, generate_cache_key
from .infrastructure.http import RequestsTransport
from .infrastructure.resilience import RateLimiter, RetryExecutor
from .protocols import Transport, TransportRequest
from .validation import (
    validate_eslip,
    validate_nil_return_period,
    validate_pin,
    validate_tcc,
)

PIN_ENDPOINT = "/checker/v1/pinbypin"
TCC_ENDPOINT = "/v1/kra-tcc/validate"
ESLIP_ENDPOINT = "/payment/checker/v1/eslip"
OBLIGATIONS_ENDPOINT = "/dtd/checker/v1/obligation"
NIL_RETURN_ENDPOINT = "/dtd/return/v1/nil"

Payload = dict[str, object]


class KraClient:
    """Validates inputs, builds cache keys and runs each call through the pipeline.

    Read operations are cached per kind with the TTLs from `CacheConfig`; filing a
    nil return is a write and always reaches the API.
    """

    def __init__(
        self, *, config: KraConfig, transport: Transport, pipeline: RequestPipeline
    ) -> None:
        self.config = config
        self.transport = transport
        self.pipeline = pipeline

    @classmethod
    def from_config(cls, config: KraConfig, transport: Transport | None = None) -> Self:
        """Wire a client with its own limiter, cache and retry executor."""
        pipeline = RequestPipeline(
            cache=ResponseCache(config.cache),
            rate_limiter=RateLimiter(config.rate_limit),
            retry_executor=RetryExecutor(config.retry),
        )
        return cls(
            config=config,
            transport=transport or RequestsTransport.from_config(config),
            pipeline=pipeline,
        )

    def verify_pin(self, pin_number: str) -> Payload:
        pin = validate_pin(pin_number)
        return self.pipeline.execute(
            self._lookup("pin_verification", PIN_ENDPOINT, {"KRAPIN": pin}, {"pin": pin})
        )

    def verify_tcc(self, tcc_number: str, kra_pin: str) -> Payload:
        tcc = validate_tcc(tcc_number)
        pin = validate_pin(kra_pin)
        return self.pipeline.execute(
            self._lookup(
                "tcc_verification",
                TCC_ENDPOINT,
                {"kraPIN": pin, "tccNumber": tcc},
                {"tcc": tcc, "pin": pin},
            )
        )

    def validate_eslip(self, eslip_number: str) -> Payload:
        eslip = validate_eslip(eslip_number)
        return self.pipeline.execute(
            self._lookup(
                "eslip_validation", ESLIP_ENDPOINT, {"EslipNumber": eslip}, {"eslip": eslip}
            )
        )

    def get_taxpayer_details(self, pin_number: str) -> Payload:
        """Fetch the PIN profile and its obligations as one cached result."""
        pin = validate_pin(pin_number)

        def fetch() -> Payload:
            profile = self.transport.send(
                TransportRequest("POST", PIN_ENDPOINT, {"KRAPIN": pin})
            )
            obligations = self.transport.send(
                TransportRequest("POST", OBLIGATIONS_ENDPOINT, {"taxPayerPin": pin})
            )
            return {**profile, "obligations": obligations.get("obligations", [])}

        return self.pipeline.execute(
            RequestDescriptor(
                endpoint=PIN_ENDPOINT,
                operation=fetch,
                cache_key=generate_cache_key("taxpayer_details", {"pin": pin}),
                ttl=self.config.cache.taxpayer_details_ttl,
            )
        )

    def file_nil_return(
        self, pin_number: str, obligation_code: int, month: int, year: int
    ) -> Payload:
        """File a nil return. Never cached: every call is a new submission."""
        pin = validate_pin(pin_number)
        validate_nil_return_period(obligation_code, month, year)
        request = TransportRequest(
            "POST",
            NIL_RETURN_ENDPOINT,
            {
                "TAXPAYERDETAILS": {
                    "TaxpayerPIN": pin,
                    "ObligationCode": obligation_code,
                    "Month": month,
                    "Year": year,
                }
            },
        )
        return self.pipeline.execute(
            RequestDescriptor(
                endpoint=NIL_RETURN_ENDPOINT, operation=lambda: self.transport.send(request)
            )
        )

    def verify_pins_batch(self, pin_numbers: Iterable[str]) -> list[BatchItem[Payload]]:
        """Verify several PINs sequentially; every PIN is validated before any call."""
        pins = [validate_pin(pin) for pin in pin_numbers]
        return self.pipeline.execute_batch(
            self._lookup("pin_verification", PIN_ENDPOINT, {"KRAPIN": pin}, {"pin": pin})
            for pin in pins
        )

    def verify_tccs_batch(self, requests: Iterable[tuple[str, str]]) -> list[BatchItem[Payload]]:
        """Verify several `(tcc_number, kra_pin)` pairs sequentially."""
        pairs = [(validate_tcc(tcc), validate_pin(pin)) for tcc, pin in requests]
        return self.pipeline.execute_batch(
            self._lookup(
                "tcc_verification",
                TCC_ENDPOINT,
                {"kraPIN": pin, "tccNumber": tcc},
                {"tcc": tcc, "pin": pin},
            )
            for tcc, pin in pairs
        )

    def clear_cache(self) -> None:
        self.pipeline.cache.clear()

    def get_cache_stats(self) -> dict[str, object]:
        return self.pipeline.cache_stats()

    def get_rate_limit_stats(self) -> dict[str, object]:
        return self.pipeline.rate_limit_stats()

    def _lookup(
        self,
        kind: str,
        endpoint: str,
        payload: dict[str, object],
        key_params: dict[str, object],
    ) -> RequestDescriptor[Payload]:
        request = TransportRequest("POST", endpoint, payload)
        return RequestDescriptor(
            endpoint=endpoint,
            operation=lambda: self.transport.send(request),
            cache_key=generate_cache_key(kind, key_params),
            ttl=self.config.cache.ttl_for(kind),
        )
