from django.test import SimpleTestCase
from django.test.utils import override_settings

from core.utils import deep_merge, is_email_internal


class DeepMergeTests(SimpleTestCase):
    def test_nested_dicts_are_merged_key_by_key(self):
        base = {"helloWorks": {"instance": {"id": 1}}, "keep": True}
        merged = deep_merge(base, {"helloWorks": {"documentLink": "X"}})
        self.assertEqual(merged, {"helloWorks": {"instance": {"id": 1}, "documentLink": "X"}, "keep": True})

    def test_lists_and_scalars_are_replaced(self):
        merged = deep_merge({"steps": [1, 2], "status": "a"}, {"steps": [3], "status": "b"})
        self.assertEqual(merged, {"steps": [3], "status": "b"})

    def test_dict_replaces_scalar(self):
        self.assertEqual(deep_merge({"error": "boom"}, {"error": {"message": "boom"}}), {"error": {"message": "boom"}})

    def test_inputs_are_not_mutated(self):
        base = {"a": {"b": [1]}}
        update = {"a": {"c": 2}}
        merged = deep_merge(base, update)
        merged["a"]["b"].append(5)
        self.assertEqual(base, {"a": {"b": [1]}})
        self.assertEqual(update, {"a": {"c": 2}})

    def test_handles_empty_values(self):
        self.assertEqual(deep_merge(None, {"a": 1}), {"a": 1})
        self.assertEqual(deep_merge({"a": 1}, None), {"a": 1})


@override_settings(INTERNAL_EMAIL_DOMAINS=["opencollective.com"])
class IsEmailInternalTests(SimpleTestCase):
    def test_internal_domain(self):
        self.assertTrue(is_email_internal("jane@opencollective.com"))
        self.assertTrue(is_email_internal("Jane@OpenCollective.com "))

    def test_subdomain_is_internal(self):
        self.assertTrue(is_email_internal("ops@staging.opencollective.com"))

    def test_external_domains(self):
        self.assertFalse(is_email_internal("jane@gmail.com"))
        self.assertFalse(is_email_internal("jane@notopencollective.com"))
        self.assertFalse(is_email_internal("opencollective.com@gmail.com"))

    def test_missing_email(self):
        self.assertFalse(is_email_internal(""))
        self.assertFalse(is_email_internal(None))
        self.assertFalse(is_email_internal("not-an-email"))
