import json
import logging
from typing import Any, Dict, Optional

from entitlement_client.diagnostics import build_fingerprint
from entitlement_client.errors import TransportFailure
from entitlement_client.models import (
    RequestContext,
    ResolvedProvider,
    ValidationFailure,
    ValidationOutcome,
    ValidationSuccess,
)
from entitlement_client.transport import HttpTransport, HttpxTransport

logger = logging.getLogger(__name__)

RECOGNIZED_RESULTS = ("success", "error")


def generic_failure_message(provider: str) -> str:
    return f"There was a problem reaching the {provider} server"


class Validator:
    """
    Runs exactly one remote entitlement check and normalizes the response.

    If the seller cannot be reached, or answers with something that is not a
    recognizable verdict, the check counts as a success with no terms of use
    attached. Only a well-formed ``"error"`` response produces a failure.
    """

    def __init__(self, transport: Optional[HttpTransport] = None):
        self._owns_transport = transport is None
        self.transport = transport or HttpxTransport()

    def close(self):
        """Close the transport if this validator created it."""
        if self._owns_transport:
            self.transport.close()

    def validate(
        self,
        product_id: str,
        product_version: str,
        resolved: ResolvedProvider,
        context: Optional[RequestContext] = None,
        host_platform_version: str = "",
    ) -> ValidationOutcome:
        context = context or RequestContext()
        url = f"{resolved.endpoint.rstrip('/')}/authenticate/{product_id}"
        payload = build_fingerprint(context.host, product_version, host_platform_version)
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if context.host:
            headers["Referer"] = context.host

        logger.info("Validating %s against %s", product_id, url)
        try:
            response = self.transport.post_json(url, headers, payload)
        except TransportFailure as e:
            logger.warning("Could not reach %s, failing open: %s", resolved.provider, e)
            return ValidationSuccess(fail_open=True)

        data = self._parse(response.body)
        if data is None or data.get("result") not in RECOGNIZED_RESULTS:
            logger.warning(
                "Unrecognized response from %s (status %s), failing open",
                resolved.provider,
                response.status,
            )
            return ValidationSuccess(fail_open=True)

        if data["result"] == "success":
            meta = data.get("licensedItemMeta")
            if not 200 <= response.status < 300:
                logger.warning(
                    "%s reported success with status %s", resolved.provider, response.status
                )
            return ValidationSuccess(licensed_item_meta=meta if isinstance(meta, dict) else None)

        message = self._error_message(data) or generic_failure_message(resolved.provider)
        return ValidationFailure(message=message)

    @staticmethod
    def _parse(body: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(body)
        except (TypeError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _error_message(data: Dict[str, Any]) -> str:
        error = data.get("error")
        if isinstance(error, dict):
            message = error.get("message")
            if isinstance(message, str):
                return message.strip()
        return ""
