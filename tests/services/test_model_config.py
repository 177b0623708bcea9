"""
Unit tests for `services/model_config.py` – ModelConfigService bindings over the configured catalog.
"""

import unittest

from config import CONFIG
from services.model_config import ModelConfigService
from shared.models import Capability


class TestModelBindings(unittest.TestCase):

    def setUp(self):
        self.binder = ModelConfigService.from_config(CONFIG)

    def test_default_binding_per_capability(self):
        binding = self.binder.bind(Capability.TEXT2PIC, 1)

        self.assertEqual(binding.model_id, 30)
        self.assertEqual(binding.model_name, "dall-e-3")
        self.assertEqual(binding.capability, Capability.TEXT2PIC)

    def test_chosen_model_with_matching_tag(self):
        binding = self.binder.bind(Capability.CHAT, 1, model_id=3)

        self.assertEqual(binding.model_name, "o1-mini")
        self.assertIn("no_streaming", binding.features)

    def test_chosen_model_with_other_tag_is_not_bound(self):
        self.assertIsNone(self.binder.bind(Capability.TEXT2PIC, 1, model_id=2))
        self.assertIsNone(self.binder.bind(Capability.CHAT, 1, model_id=30))
        self.assertIsNone(self.binder.bind(Capability.CHAT, 1, model_id=999))

    def test_user_default_overrides_system_default(self):
        self.binder.set_user_default(8, Capability.CHAT, 2)

        self.assertEqual(self.binder.bind(Capability.CHAT, 8).model_id, 2)
        self.assertEqual(self.binder.bind(Capability.CHAT, 9).model_id, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
