"""Claim extraction and coercion helpers.

Binding rules only ever see strings, so verified claim values are coerced
here: scalars to their string form, lists element-wise, nested objects to
compact JSON.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from aclauth.core.oidc.claims import ClaimValue

_MISSING = object()


def claim_to_string(value: Any) -> str:
    """Coerce a single claim value to its string form.

    Args:
        value: Claim value as decoded from the token payload.

    Returns:
        String rendering; booleans as ``true``/``false``, lists joined with
        ``,``, objects as compact JSON.
    """
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return ",".join(claim_to_string(v) for v in value)
    return json.dumps(value, separators=(",", ":"), sort_keys=True)


def claim_to_list(value: Any) -> tuple[str, ...]:
    """Coerce a claim value to an ordered tuple of strings.

    A scalar becomes a one-element tuple; ``None`` becomes empty.
    """
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(claim_to_string(v) for v in value)
    return (claim_to_string(value),)


def lookup_claim(claims: Mapping[str, Any], name: str) -> Any:
    """Look up a claim by name or JSON pointer.

    Names starting with ``/`` are treated as RFC 6901 pointers into nested
    claims (``/address/country``, ``/groups/0``).

    Returns:
        The claim value, or ``None`` when it is absent.
    """
    if not name.startswith("/"):
        return claims.get(name)

    current: Any = claims
    for raw_part in name[1:].split("/"):
        part = raw_part.replace("~1", "/").replace("~0", "~")
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else _MISSING
        else:
            current = _MISSING
        if current is _MISSING:
            return None
    return current


def extract_mapped_claims(
    claims: Mapping[str, Any],
    claim_mappings: Mapping[str, str],
    list_claim_mappings: Mapping[str, str],
) -> dict[str, ClaimValue]:
    """Select the claims an auth method exposes.

    Scalar mappings are applied first, then list mappings; a claim named in
    both ends up as a list.

    Args:
        claims: Verified token payload.
        claim_mappings: External claim name to bind name, scalar values.
        list_claim_mappings: External claim name to bind name, list values.

    Returns:
        External claim name to coerced value, for claims present in the token.
    """
    selected: dict[str, ClaimValue] = {}
    for name in claim_mappings:
        value = lookup_claim(claims, name)
        if value is not None:
            selected[name] = claim_to_string(value)
    for name in list_claim_mappings:
        value = lookup_claim(claims, name)
        if value is not None:
            selected[name] = claim_to_list(value)
    return selected
