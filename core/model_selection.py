"""
core/model_selection.py

Eligible-model listing and "predicted next" suggestions.

Clients that let users iterate over models ("try again with another model") need a stable
ordering per capability and a cyclic successor function over it. Ordering is by quality
descending, ties broken by ascending id, so it stays deterministic across calls.
"""

from typing import List, Optional, Sequence

from provider_api.base import ModelBinder
from shared.models import Capability, CatalogModel, DEFAULT_TOPIC

TOPIC_CAPABILITIES = {
    DEFAULT_TOPIC: Capability.CHAT,
    "mediamaker": Capability.TEXT2PIC,
    "analyzefile": Capability.PIC2TEXT,
    "tools:sort": Capability.CHAT,
    "tools:pic": Capability.TEXT2PIC,
    "tools:vid": Capability.TEXT2VID,
    "tools:search": Capability.CHAT,
    "tools:lang": Capability.CHAT,
    "tools:filesort": Capability.VECTORIZE,
}


def capability_for_topic(topic: Optional[str]) -> Capability:
    """Capability whose models can answer `topic`; anything unmapped is CHAT."""
    return TOPIC_CAPABILITIES.get((topic or "").lower(), Capability.CHAT)


def eligible_models(binder: ModelBinder, capability: Capability, owner_id: int) -> List[CatalogModel]:
    """
    Return the selectable models for `capability`, best first.

    Models rated below the owner's minimum rating are dropped; with no threshold configured
    every selectable model is eligible.
    """
    models = binder.models_for(capability)
    min_rating = binder.min_rating_for(owner_id)
    if min_rating is not None:
        models = [m for m in models if m.rating >= min_rating]
    return sorted(models, key=lambda m: (-m.quality, m.id))


def predicted_next(models: Sequence[CatalogModel], current_id: Optional[int]) -> Optional[CatalogModel]:
    """
    Cyclic successor of `current_id` in `models`.

    Returns the first model when `current_id` is unset, unknown or the last entry; None for an
    empty list.
    """
    if not models:
        return None
    if current_id is None:
        return models[0]
    for index, model in enumerate(models):
        if model.id == current_id:
            return models[(index + 1) % len(models)]
    return models[0]
