"""Deterministic fingerprints for captchas and datasets.

``dataset_id`` covers structure only (captcha identities and order).
``dataset_content_id`` also covers solutions, so it changes whenever a captcha
is solved while ``dataset_id`` stays put.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence
from typing import Any

from captcha_provider.storage.models import Captcha, CaptchaItem


def hash_json(value: Any) -> str:
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def item_hash(item: CaptchaItem) -> str:
    return hash_json({"type": item.type, "data": item.data})


def captcha_id(captcha: Captcha) -> str:
    return hash_json(
        {
            "target": captcha.target,
            "salt": captcha.salt,
            "items": [item.hash or item_hash(item) for item in captcha.items],
        }
    )


def dataset_id(captchas: Sequence[Captcha]) -> str:
    return hash_json([captcha.captcha_id for captcha in captchas])


def dataset_content_id(captchas: Sequence[Captcha]) -> str:
    return hash_json(
        [
            {
                "captchaId": captcha.captcha_id,
                "solution": sorted(captcha.solution) if captcha.solution is not None else None,
            }
            for captcha in captchas
        ]
    )


def with_hashes(captcha: Captcha) -> Captcha:
    """Return a copy with item hashes and the captcha id filled in."""
    items = [item.model_copy(update={"hash": item_hash(item)}) for item in captcha.items]
    hashed = captcha.model_copy(update={"items": items})
    return hashed.model_copy(update={"captcha_id": captcha_id(hashed)})
