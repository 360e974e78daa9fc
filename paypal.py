import os
from typing import Any, Dict, Optional

import requests

PAYPAL_CLIENT_ID = os.getenv("PAYPAL_CLIENT_ID")
PAYPAL_SECRET = os.getenv("PAYPAL_SECRET")
PAYPAL_MODE = os.getenv("PAYPAL_MODE", "sandbox")
PAYPAL_API_BASE = (
    "https://api-m.sandbox.paypal.com" if PAYPAL_MODE == "sandbox" else "https://api-m.paypal.com"
)
TIMEOUT = 20


class PayPalError(Exception):
    pass


def _post(url: str, **kwargs) -> requests.Response:
    try:
        return requests.post(url, timeout=TIMEOUT, **kwargs)
    except requests.RequestException as exc:
        raise PayPalError(f"PayPal request failed: {exc}") from exc


def _json(r: requests.Response) -> Dict[str, Any]:
    try:
        return r.json()
    except ValueError as exc:
        raise PayPalError(f"PayPal returned a non-JSON body: {r.status_code} {r.text[:200]}") from exc


def _access_token() -> str:
    if not PAYPAL_CLIENT_ID or not PAYPAL_SECRET:
        raise PayPalError("PAYPAL_CLIENT_ID / PAYPAL_SECRET not set")
    r = _post(
        f"{PAYPAL_API_BASE}/v1/oauth2/token",
        auth=(PAYPAL_CLIENT_ID, PAYPAL_SECRET),
        data={"grant_type": "client_credentials"},
    )
    if r.status_code != 200:
        raise PayPalError(f"PayPal auth failed: {r.status_code} {r.text}")
    token = _json(r).get("access_token")
    if not token:
        raise PayPalError("PayPal auth response has no access_token")
    return token


def _headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {_access_token()}", "Content-Type": "application/json"}


def create_order(total: float, return_url: str, cancel_url: str,
                 description: str = "KOI Streetwear Order") -> Dict[str, Any]:
    value = f"{total:.2f}"
    body = {
        "intent": "CAPTURE",
        "purchase_units": [
            {
                "description": description,
                "amount": {
                    "currency_code": "USD",
                    "value": value,
                    "breakdown": {"item_total": {"currency_code": "USD", "value": value}},
                },
            }
        ],
        "application_context": {"return_url": return_url, "cancel_url": cancel_url},
    }
    headers = _headers()
    headers["Prefer"] = "return=representation"
    r = _post(f"{PAYPAL_API_BASE}/v2/checkout/orders", headers=headers, json=body)
    if r.status_code not in (200, 201):
        raise PayPalError(f"PayPal create order failed: {r.status_code} {r.text}")
    return _json(r)


def capture_order(order_id: str) -> Dict[str, Any]:
    r = _post(f"{PAYPAL_API_BASE}/v2/checkout/orders/{order_id}/capture", headers=_headers(), json={})
    if r.status_code not in (200, 201):
        raise PayPalError(f"PayPal capture failed: {r.status_code} {r.text}")
    return _json(r)


def captured_amount(capture: Dict[str, Any]) -> Optional[float]:
    """Sandbox reports the amount either on the purchase unit or on its first capture."""
    units = capture.get("purchase_units") or []
    if not units:
        return None
    purchase = units[0]
    value = (purchase.get("amount") or {}).get("value")
    if not value:
        captures = (purchase.get("payments") or {}).get("captures") or []
        if captures:
            value = (captures[0].get("amount") or {}).get("value")
    if not value:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise PayPalError(f"Malformed captured amount: {value!r}") from exc
