"""Tests for entity values, filters, snapshots and date cleaning."""

from __future__ import annotations

import datetime
import unittest

from tourdesk.collection import ReconciledCollection
from tourdesk.dateutils import clean_date_for_db, clean_dates_in_payload, format_us_date
from tourdesk.models import EVENT_UPDATE, ChangeEvent, Entity, EntityFilter
from tourdesk.tables import ORDERS, get_table


class TestEntity(unittest.TestCase):

    def test_from_row_splits_id_and_version(self):
        entity = Entity.from_row({"id": 5, "status": "pending", "updated_at": "T0"})
        self.assertEqual(entity.id, "5")
        self.assertEqual(entity.updated_at, "T0")
        self.assertEqual(dict(entity.fields), {"status": "pending"})
        self.assertEqual(entity.to_row(), {"id": "5", "status": "pending", "updated_at": "T0"})

    def test_row_without_id_rejected(self):
        with self.assertRaises(ValueError):
            Entity.from_row({"status": "pending"})

    def test_with_fields_returns_new_entity(self):
        entity = Entity("1", {"status": "pending"}, "T0")
        updated = entity.with_fields({"status": "confirmed", "id": "2", "updated_at": "T1"})
        self.assertEqual(entity.get("status"), "pending")
        self.assertEqual(updated.get("status"), "confirmed")
        self.assertEqual(updated.id, "1")
        self.assertEqual(updated.updated_at, "T1")

    def test_without_fields(self):
        entity = Entity("1", {"a": 1, "b": 2})
        self.assertEqual(dict(entity.without_fields(["a"]).fields), {"b": 2})

    def test_change_event_requires_an_entity(self):
        with self.assertRaises(ValueError):
            ChangeEvent(EVENT_UPDATE, "orders")
        with self.assertRaises(ValueError):
            ChangeEvent("truncate", "orders", current=Entity("1"))


class TestEntityFilter(unittest.TestCase):

    def test_status_set(self):
        criteria = EntityFilter(statuses=frozenset({"pending"}))
        self.assertTrue(criteria.matches(Entity("1", {"status": "pending"})))
        self.assertFalse(criteria.matches(Entity("1", {"status": "cancelled"})))

    def test_visibility_only_hides_explicit_false(self):
        criteria = EntityFilter(visibility_field="show_in_provider")
        self.assertTrue(criteria.matches(Entity("1", {})))
        self.assertTrue(criteria.matches(Entity("1", {"show_in_provider": None})))
        self.assertFalse(criteria.matches(Entity("1", {"show_in_provider": False})))

    def test_table_filter_depends_on_probe(self):
        self.assertIsNone(ORDERS.build_filter(None).visibility_field)
        self.assertIsNone(ORDERS.build_filter(False).visibility_field)
        self.assertEqual(ORDERS.build_filter(True).visibility_field, "show_in_provider")

    def test_unknown_table(self):
        self.assertIs(get_table("orders"), ORDERS)
        with self.assertRaises(KeyError):
            get_table("invoices")


class TestReconciledCollection(unittest.TestCase):

    def test_copy_on_write(self):
        empty = ReconciledCollection()
        one = empty.with_entity(Entity("1"))
        none = one.without("1")
        self.assertEqual(len(empty), 0)
        self.assertIn("1", one)
        self.assertNotIn("1", none)
        self.assertEqual((empty.version, one.version, none.version), (0, 1, 2))


class TestDateCleaning(unittest.TestCase):

    def test_clean_date_for_db(self):
        self.assertEqual(clean_date_for_db("2024-05-01T10:00:00Z"), "2024-05-01")
        self.assertEqual(clean_date_for_db(datetime.date(2024, 5, 1)), "2024-05-01")
        self.assertIsNone(clean_date_for_db(""))
        self.assertIsNone(clean_date_for_db("soon"))

    def test_clean_dates_in_payload_is_recursive(self):
        payload = {
            "departure_date": "2024-05-01T10:00:00Z",
            "note": "2024-05-01T10:00:00Z",
            "passengers": [{"date_of_birth": "1990-02-03 ", "first_name": "Ada"}],
            "booking": {"booking_date": ""},
        }
        cleaned = clean_dates_in_payload(payload)
        self.assertEqual(cleaned["departure_date"], "2024-05-01")
        self.assertEqual(cleaned["note"], "2024-05-01T10:00:00Z")
        self.assertEqual(cleaned["passengers"][0], {"date_of_birth": "1990-02-03", "first_name": "Ada"})
        self.assertIsNone(cleaned["booking"]["booking_date"])
        self.assertEqual(payload["departure_date"], "2024-05-01T10:00:00Z")

    def test_format_us_date(self):
        self.assertEqual(format_us_date("2024-05-01"), "5/1/2024")
        self.assertIsNone(format_us_date(None))
