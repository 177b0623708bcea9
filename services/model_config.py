"""
Model catalog and capability binding.

This module implements `ModelBinder` over the model catalog declared in config.json. Each
catalog entry carries a capability tag (CHAT, SORT, TEXT2PIC, ...), the provider that serves
it, the provider-side model name, a quality score used for ordering, a rating used for
eligibility thresholds, and feature flags such as `no_streaming` or `no_system_role`.

Default models are resolved per capability with user defaults taking precedence over the
system defaults from configuration. User defaults live in memory here; a deployment that
persists them can subclass and override `user_default`.
"""

import logging
from typing import Any, Dict, FrozenSet, List, Optional

from provider_api.base import ModelBinder
from shared.models import Capability, CatalogModel

logger = logging.getLogger(__name__)


def load_catalog(entries: List[Dict[str, Any]]) -> List[CatalogModel]:
    """Build catalog models from raw config entries, skipping malformed ones with a warning."""
    catalog: List[CatalogModel] = []
    for entry in entries:
        try:
            catalog.append(CatalogModel(
                id=int(entry["id"]),
                tag=Capability(str(entry["tag"]).upper()),
                provider=str(entry["provider"]).lower(),
                name=str(entry["name"]),
                quality=float(entry.get("quality", 0.0)),
                rating=float(entry.get("rating", 0.0)),
                features=frozenset(entry.get("features", [])),
                selectable=bool(entry.get("selectable", True)),
            ))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Skipping malformed catalog entry", extra={'entry': entry, 'error': str(e)})
    return catalog


class ModelConfigService(ModelBinder):
    """
    Catalog-backed `ModelBinder`.

    Args:
        catalog: All known models.
        system_defaults: Capability tag -> model id used when a user has no own default.
        min_rating: Global minimum rating for eligible models; None disables the filter.
        user_min_ratings: Per-owner overrides of `min_rating`.
    """

    def __init__(
        self,
        catalog: List[CatalogModel],
        system_defaults: Dict[str, int],
        min_rating: Optional[float] = None,
        user_min_ratings: Optional[Dict[int, float]] = None,
    ):
        self._models: Dict[int, CatalogModel] = {m.id: m for m in catalog}
        self._system_defaults = {Capability(k.upper()): int(v) for k, v in system_defaults.items()}
        self._min_rating = min_rating
        self._user_min_ratings = dict(user_min_ratings or {})
        self._user_defaults: Dict[int, Dict[Capability, int]] = {}

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ModelConfigService":
        models_config = config.get("models", {})
        user_min = {int(k): float(v) for k, v in (models_config.get("user_min_ratings") or {}).items()}
        return cls(
            catalog=load_catalog(models_config.get("catalog", [])),
            system_defaults=models_config.get("defaults", {}),
            min_rating=models_config.get("min_rating"),
            user_min_ratings=user_min,
        )

    def set_user_default(self, user_id: int, capability: Capability, model_id: int) -> None:
        model = self._models.get(model_id)
        if model is None or model.tag != capability:
            raise ValueError(f"Model {model_id} is not a {capability.value} model")
        self._user_defaults.setdefault(user_id, {})[capability] = model_id

    def user_default(self, user_id: int, capability: Capability) -> Optional[int]:
        return self._user_defaults.get(user_id, {}).get(capability)

    def default_model(self, capability: Capability, user_id: int) -> Optional[int]:
        model_id = self.user_default(user_id, capability) or self._system_defaults.get(capability)
        if model_id is None:
            logger.warning("No default model configured", extra={'capability': capability.value, 'user_id': user_id})
        return model_id

    def provider_for(self, model_id: int) -> Optional[str]:
        model = self._models.get(model_id)
        return model.provider if model else None

    def model_name_for(self, model_id: int) -> Optional[str]:
        model = self._models.get(model_id)
        return model.name if model else None

    def features_for(self, model_id: int) -> FrozenSet[str]:
        model = self._models.get(model_id)
        return model.features if model else frozenset()

    def capability_for(self, model_id: int) -> Optional[Capability]:
        model = self._models.get(model_id)
        return model.tag if model else None

    def models_for(self, capability: Capability) -> List[CatalogModel]:
        return [m for m in self._models.values() if m.tag == capability and m.selectable]

    def min_rating_for(self, owner_id: int) -> Optional[float]:
        return self._user_min_ratings.get(owner_id, self._min_rating)
