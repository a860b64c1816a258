# tests/test_policy.py
import unittest

from dbproxy.config.policy import PolicyConfig, load_policy
from dbproxy.errors import PolicyViolation
from dbproxy.gateway.decoder import decode_request
from dbproxy.gateway.policy import Deny, Permit, PolicyEngine


def _policy() -> PolicyConfig:
    return PolicyConfig(
        readable_tables={"tasks", "students", "tov_payments", "classes", "notes"},
        writable_tables={"tasks", "tov_payments", "notes"},
        deletable_tables={"tasks", "students", "notes"},
        filter_required_tables={"tasks", "students", "tov_payments"},
        protected_fields={"tov_payments": {"amount", "created_at"}, "tasks": {"created_at"}},
    )


class PolicyCase(unittest.TestCase):
    def setUp(self):
        self.engine = PolicyEngine(_policy())

    def decide(self, body):
        return self.engine.evaluate(decode_request(body))

    def assertDenied(self, body, fragment):
        decision = self.decide(body)
        self.assertIsInstance(decision, Deny, f"expected denial for {body}")
        self.assertEqual(decision.status, 403)
        self.assertIn(fragment, decision.reason)
        return decision

    def assertPermitted(self, body):
        decision = self.decide(body)
        self.assertIsInstance(decision, Permit, getattr(decision, "reason", ""))
        return decision


class TestTableReadability(PolicyCase):
    def test_unknown_table_denies_every_operation(self):
        for op, extra in (
            ("select", {}),
            ("insert", {"data": {"a": 1}}),
            ("update", {"data": {"a": 1}, "filters": {"eq": {"id": 1}}}),
            ("delete", {"filters": {"eq": {"id": 1}}}),
            ("upsert", {"data": {"a": 1}}),
        ):
            with self.subTest(op=op):
                self.assertDenied(
                    {"table": "secrets", "operation": op, **extra},
                    "Table 'secrets' not allowed",
                )

    def test_select_denied_regardless_of_filters(self):
        self.assertDenied(
            {"table": "secrets", "operation": "select", "filters": {"eq": {"id": 1}}},
            "not allowed",
        )

    def test_readable_select_permitted(self):
        self.assertPermitted({"table": "classes", "operation": "select"})


class TestEmbeddedResources(PolicyCase):
    def test_embedded_table_must_be_readable(self):
        for select in (
            "id,secrets(*)",
            "id,owner:secrets(name)",
            "id,secrets!tasks_secret_fkey(*)",
            "id,...secrets(name)",
            "id,students(id,secrets(*))",
        ):
            with self.subTest(select=select):
                self.assertDenied(
                    {"table": "tasks", "operation": "select", "select": select},
                    "Table 'secrets' not allowed",
                )

    def test_readable_embed_permitted(self):
        self.assertPermitted(
            {
                "table": "tasks",
                "operation": "select",
                "select": "id,kid:students!inner(id,classes(name))",
                "filters": {"eq": {"kid.id": 3, "classes.name": "7B"}},
                "order": [{"column": "students.id"}],
            }
        )

    def test_dotted_column_needs_matching_embed(self):
        self.assertDenied(
            {"table": "tasks", "operation": "select", "filters": {"eq": {"secrets.owner": "x"}}},
            "Table 'secrets' not allowed",
        )
        # readable, but not embedded in this request
        self.assertDenied(
            {"table": "tasks", "operation": "select", "filters": {"eq": {"students.id": 1}}},
            "Table 'students' not allowed",
        )
        self.assertDenied(
            {
                "table": "tasks",
                "operation": "select",
                "order": [{"column": "secrets.created_at"}],
            },
            "Table 'secrets' not allowed",
        )

    def test_dotted_filter_on_delete_denied(self):
        self.assertDenied(
            {"table": "tasks", "operation": "delete", "filters": {"eq": {"secrets.id": 1}}},
            "Table 'secrets' not allowed",
        )


class TestWriteAndDelete(PolicyCase):
    def test_read_only_table_rejects_writes(self):
        for op in ("insert", "update", "upsert"):
            with self.subTest(op=op):
                self.assertDenied(
                    {
                        "table": "classes",
                        "operation": op,
                        "data": {"name": "x"},
                        "filters": {"eq": {"id": 1}},
                    },
                    "Write to 'classes' not allowed",
                )

    def test_non_deletable_mentions_archive_pattern(self):
        self.assertDenied(
            {"table": "tov_payments", "operation": "delete", "filters": {"eq": {"id": 1}}},
            "archive pattern",
        )

    def test_delete_does_not_need_write_grant(self):
        # students is read-only for writes but rows may be removed with a filter
        self.assertPermitted(
            {"table": "students", "operation": "delete", "filters": {"eq": {"id": 9}}}
        )


class TestFilterRequired(PolicyCase):
    def test_missing_or_empty_filters_denied(self):
        for filters in (None, {}, {"eq": {}}):
            for op, extra in (("update", {"data": {"title": "x"}}), ("delete", {})):
                with self.subTest(op=op, filters=filters):
                    body = {"table": "tasks", "operation": op, **extra}
                    if filters is not None:
                        body["filters"] = filters
                    self.assertDenied(body, "requires at least one filter")

    def test_one_filter_passes_layer(self):
        self.assertPermitted(
            {
                "table": "tasks",
                "operation": "update",
                "data": {"title": "x"},
                "filters": {"eq": {"id": 1}},
            }
        )
        self.assertPermitted(
            {"table": "tasks", "operation": "delete", "filters": {"in": {"id": [1, 2]}}}
        )

    def test_unscoped_mutation_allowed_elsewhere(self):
        self.assertPermitted({"table": "notes", "operation": "delete"})

    def test_ordering_write_denial_first(self):
        # students is filter-required but not writable: layer 2 fires before layer 4
        self.assertDenied(
            {"table": "students", "operation": "update", "data": {"a": 1}},
            "Write to 'students'",
        )


class TestProtectedFields(PolicyCase):
    def test_single_object_payload(self):
        self.assertDenied(
            {
                "table": "tov_payments",
                "operation": "update",
                "data": {"amount": 500},
                "filters": {"eq": {"id": 1}},
            },
            "Field 'amount' on table 'tov_payments' is protected",
        )

    def test_any_array_element(self):
        self.assertDenied(
            {
                "table": "tasks",
                "operation": "insert",
                "data": [{"title": "a"}, {"title": "b", "created_at": "2025-01-01"}],
            },
            "Field 'created_at' on table 'tasks' is protected",
        )

    def test_same_payload_without_field_permitted(self):
        self.assertPermitted(
            {
                "table": "tov_payments",
                "operation": "update",
                "data": {"note": "late"},
                "filters": {"eq": {"id": 1}},
            }
        )
        self.assertPermitted(
            {"table": "tasks", "operation": "upsert", "data": [{"id": 1, "title": "a"}]}
        )

    def test_array_update_still_scanned(self):
        self.assertDenied(
            {
                "table": "tov_payments",
                "operation": "update",
                "data": [{"amount": 1}],
                "filters": {"eq": {"id": 1}},
            },
            "Field 'amount'",
        )

    def test_denial_does_not_leak_allow_lists(self):
        decision = self.decide({"table": "secrets", "operation": "select"})
        for table in ("tasks", "students", "notes"):
            self.assertNotIn(table, decision.reason)

    def test_deny_converts_to_policy_violation(self):
        err = Deny("Table 'x' not allowed").to_error()
        self.assertIsInstance(err, PolicyViolation)
        self.assertEqual(err.status, 403)


class TestDeterminism(PolicyCase):
    def test_same_input_same_decision(self):
        body = {"table": "tasks", "operation": "delete", "filters": {}}
        first, second = self.decide(body), self.decide(body)
        self.assertEqual(first, second)


class TestBundledPolicyScenarios(unittest.TestCase):
    """Concrete scenarios against the shipped policy.json."""

    @classmethod
    def setUpClass(cls):
        cls.engine = PolicyEngine(load_policy())

    def decide(self, body):
        return self.engine.evaluate(decode_request(body))

    def test_task_insert_permitted(self):
        d = self.decide(
            {
                "table": "tasks",
                "operation": "insert",
                "data": {"title": "Buy milk", "module": "Personal", "status": "open"},
            }
        )
        self.assertIsInstance(d, Permit)

    def test_students_delete_requires_filter(self):
        d = self.decide({"table": "students", "operation": "delete", "filters": {}})
        self.assertIsInstance(d, Deny)
        self.assertIn("requires at least one filter", d.reason)

    def test_payment_amount_protected(self):
        d = self.decide(
            {
                "table": "tov_payments",
                "operation": "update",
                "data": {"amount": 500},
                "filters": {"eq": {"id": 1}},
            }
        )
        self.assertIsInstance(d, Deny)
        self.assertEqual(d.reason, "Field 'amount' on table 'tov_payments' is protected")

    def test_unlisted_table(self):
        d = self.decide({"table": "internal_audit_log", "operation": "select"})
        self.assertIsInstance(d, Deny)
        self.assertEqual(d.reason, "Table 'internal_audit_log' not allowed")

    def test_reminders_range_select(self):
        d = self.decide(
            {
                "table": "reminders",
                "operation": "select",
                "filters": {"lte": {"due_date": "2025-01-01"}},
                "order": [{"column": "due_date", "ascending": True}],
                "limit": 10,
            }
        )
        self.assertIsInstance(d, Permit)


if __name__ == "__main__":
    unittest.main()
