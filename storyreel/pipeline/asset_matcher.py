"""
Asset relevance matching for keyframe prompts.

Picks the recurring assets (characters / items / locations) a scene talks
about, so the image prompt can carry their look for cross-scene consistency.

The heuristic is deliberately recall-biased: a lowercase substring check of
each asset's match keys against the scene's visual + audio text. False
positives (a common first name showing up elsewhere) are accepted; missing a
character that is on screen is not.

Match keys for an asset name:
  "Protagonist (John)"  →  "protagonist (john)", "protagonist", "john"
  "Old Lighthouse"      →  "old lighthouse", "old"
"""

import re
import logging
from typing import Iterable

from .models import Asset

logger = logging.getLogger(__name__)

_ALIAS_PATTERN = re.compile(r"\(([^)]*)\)")


def match_keys(name: str) -> list[str]:
    """Lowercased keys that make an asset relevant when found in scene text."""
    lowered = name.strip().lower()
    if not lowered:
        return []

    keys = [lowered, lowered.split(" ")[0]]

    for alias in _ALIAS_PATTERN.findall(lowered):
        alias = alias.strip()
        if alias:
            keys.extend([alias, alias.split(" ")[0]])

    unique: list[str] = []
    for key in keys:
        key = key.strip()
        if key and key not in unique:
            unique.append(key)
    return unique


def match_assets(scene_text: str, candidates: Iterable[Asset]) -> list[Asset]:
    """Return the candidates whose name (or first name / alias) appears in scene_text.

    Assets are identified by name, case-insensitively. Re-analysis can leave
    several rows with the same name; only one reaches the prompt, the first
    generated row if there is one, otherwise the first row seen.
    """
    haystack = scene_text.lower()
    chosen: dict[str, Asset] = {}

    for asset in candidates:
        identity = asset.name.strip().lower()
        current = chosen.get(identity)
        if current is None or (asset.is_generated and not current.is_generated):
            chosen[identity] = asset

    relevant = [
        asset for asset in chosen.values()
        if any(key in haystack for key in match_keys(asset.name))
    ]

    logger.debug(f"Asset matcher: {len(relevant)}/{len(chosen)} assets relevant")
    return relevant


def build_reference_block(assets: Iterable[Asset]) -> str:
    """Serialize matched assets into the reference list the image prompt embeds."""
    return "\n\n".join(
        f'REFERENCE ({asset.type.value.upper()}): "{asset.name}" looks like: {asset.visual_prompt}'
        for asset in assets
    )
