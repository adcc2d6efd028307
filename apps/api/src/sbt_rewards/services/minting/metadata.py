"""ERC-721 metadata documents for reward tokens."""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping

from sbt_rewards.schemas.ledger import IssuedTokenRecord, TemplateRecord

PLACEHOLDER_PREFIX = "ipfs://pending-"


def compose_metadata(
    template: TemplateRecord,
    token: IssuedTokenRecord,
    *,
    image_uri: str | None,
) -> dict[str, Any]:
    attributes: list[dict[str, Any]] = [
        {"trait_type": "Shop ID", "value": template.shop_id},
        {"trait_type": "Issue Pattern", "value": template.issue_pattern.value},
        {"trait_type": "Stamps", "value": token.current_stamps},
        {"trait_type": "Max Stamps", "value": token.max_stamps},
        {"trait_type": "Status", "value": token.status.value},
        {"trait_type": "Issued At", "value": token.issued_at.isoformat()},
    ]
    if template.reward_description:
        attributes.append({"trait_type": "Reward", "value": template.reward_description})

    return {
        "name": template.name,
        "description": template.description or template.reward_description or template.name,
        "image": image_uri or template.image_url or "",
        "attributes": attributes,
    }


def placeholder_uri(document: Mapping[str, Any]) -> str:
    """Deterministic local stand-in used until the document is actually pinned."""

    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return PLACEHOLDER_PREFIX + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def is_placeholder(uri: str | None) -> bool:
    return bool(uri) and uri.startswith(PLACEHOLDER_PREFIX)


__all__ = ["PLACEHOLDER_PREFIX", "compose_metadata", "is_placeholder", "placeholder_uri"]
