"""BIP21 payment URI parsing and building (bitcoin:<address>?amount=..&label=..)."""

import re
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional
from urllib.parse import quote, unquote_plus
from pydantic import BaseModel

from .address_validator import AddressValidator

_URI_RE = re.compile(r"bitcoin:([A-Za-z0-9]+)(\?[^\s]*)?", re.IGNORECASE)
_AMOUNT_RE = re.compile(r"^(\d+(\.\d{1,8})?|\.\d{1,8})$")


class BIP21Request(BaseModel):
    """A parsed payment request."""
    address: str
    amount: Optional[Decimal] = None
    label: Optional[str] = None
    message: Optional[str] = None
    extras: Dict[str, str] = {}

    model_config = {"frozen": True}


def _parse_query(query: str) -> Optional[Dict[str, str]]:
    params: Dict[str, str] = {}
    for pair in query.split("&"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        key = key.lower()
        if key in params:
            # Duplicate parameters make the URI ambiguous
            return None
        params[key] = unquote_plus(value)
    return params


def parse_bip21(text: str) -> Optional[BIP21Request]:
    """Find and parse the first BIP21 URI in ``text``.

    Returns None when there is no URI, the address fails the structural
    check, the amount is not a positive decimal, or an unknown required
    (``req-``) parameter is present.
    """
    if not text:
        return None
    match = _URI_RE.search(text)
    if not match:
        return None

    address = match.group(1)
    if not AddressValidator.is_valid(address):
        return None

    params: Dict[str, str] = {}
    if match.group(2):
        query = match.group(2)[1:].rstrip(".,;:!?)")
        parsed = _parse_query(query)
        if parsed is None:
            return None
        params = parsed

    if any(key.startswith("req-") for key in params):
        return None

    amount = None
    raw_amount = params.pop("amount", None)
    if raw_amount is not None:
        if not _AMOUNT_RE.match(raw_amount):
            return None
        try:
            amount = Decimal(raw_amount)
        except InvalidOperation:
            return None
        if amount <= 0:
            return None

    return BIP21Request(
        address=address,
        amount=amount,
        label=params.pop("label", None) or None,
        message=params.pop("message", None) or None,
        extras=params,
    )


def build_bip21(address: str, amount: Optional[Decimal] = None, label: Optional[str] = None) -> str:
    """Build a BIP21 URI for a receive request."""
    uri = f"bitcoin:{address}"
    query = []
    if amount is not None and amount > 0:
        text = format(amount.quantize(Decimal("0.00000001")), "f").rstrip("0").rstrip(".")
        query.append(f"amount={text}")
    if label:
        query.append(f"label={quote(label)}")
    if query:
        uri += "?" + "&".join(query)
    return uri
