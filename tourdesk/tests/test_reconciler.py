"""
Unit tests for ChangeReconciler.

Grouped by concept:
  - seeding (full replace, idempotence, filter)
  - optimistic mutations, confirm and rollback
  - remote insert / update / delete events
  - conflicts between pending mutations and remote events
  - listener fan-out
"""

from __future__ import annotations

import unittest

from tourdesk.const import ACTIVE_ORDER_STATUSES
from tourdesk.models import ChangeEvent, Entity, EntityFilter, MutationState
from tourdesk.reconciler import ChangeReconciler, is_older

from .test_common import make_order

T0 = "2024-04-01T09:00:00+00:00"
T1 = "2024-04-01T10:00:00+00:00"
T2 = "2024-04-01T11:00:00+00:00"


def update_event(entity_id: str, updated_at: str | None = T1, **fields) -> ChangeEvent:
    return ChangeEvent("update", "orders", current=Entity(entity_id, fields, updated_at))


def insert_event(entity: Entity) -> ChangeEvent:
    return ChangeEvent("insert", "orders", current=entity)


def delete_event(entity_id: str) -> ChangeEvent:
    return ChangeEvent("delete", "orders", previous=Entity(entity_id))


def seeded(*entities, criteria=None) -> ChangeReconciler:
    reconciler = ChangeReconciler(criteria)
    reconciler.seed(entities or [make_order()])
    return reconciler


class TestSeed(unittest.TestCase):

    def test_seed_replaces_previous_state(self):
        reconciler = seeded(make_order("a"), make_order("b"))
        reconciler.seed([make_order("a")])
        self.assertEqual(reconciler.data.ids(), ["a"])

    def test_seed_twice_gives_identical_collection(self):
        entities = [make_order("a"), make_order("b"), make_order("c")]
        reconciler = ChangeReconciler()
        first = dict(reconciler.seed(entities).entities)
        second = dict(reconciler.seed(entities).entities)
        self.assertEqual(first, second)
        self.assertEqual(len(second), 3)

    def test_seed_keeps_last_duplicate(self):
        reconciler = seeded(make_order("a", notes="old"), make_order("a", notes="new"))
        self.assertEqual(len(reconciler.data), 1)
        self.assertEqual(reconciler.get("a").get("notes"), "new")

    def test_seed_applies_filter(self):
        criteria = EntityFilter(statuses=ACTIVE_ORDER_STATUSES)
        reconciler = seeded(make_order("a"), make_order("b", status="cancelled"), criteria=criteria)
        self.assertEqual(reconciler.data.ids(), ["a"])

    def test_seed_bumps_version(self):
        reconciler = ChangeReconciler()
        self.assertEqual(reconciler.data.version, 0)
        reconciler.seed([make_order()])
        self.assertEqual(reconciler.data.version, 1)


class TestOptimisticMutations(unittest.TestCase):

    def test_patch_visible_immediately(self):
        reconciler = seeded()
        reconciler.apply_optimistic("order-1", {"status": "confirmed"})
        self.assertEqual(reconciler.get("order-1").get("status"), "confirmed")
        self.assertEqual(len(reconciler.pending()), 1)

    def test_unknown_id_raises(self):
        reconciler = seeded()
        with self.assertRaises(KeyError):
            reconciler.apply_optimistic("missing", {"status": "confirmed"})

    def test_empty_patch_raises(self):
        reconciler = seeded()
        with self.assertRaises(ValueError):
            reconciler.apply_optimistic("order-1", {"updated_at": T2})

    def test_rollback_restores_snapshot_exactly(self):
        reconciler = seeded()
        before = reconciler.get("order-1")
        handle = reconciler.apply_optimistic("order-1", {"status": "confirmed", "notes": "call back"})
        mutation = reconciler.rollback(handle)
        self.assertEqual(reconciler.get("order-1"), before)
        self.assertEqual(mutation.state, MutationState.FAILED)
        self.assertEqual(reconciler.pending(), [])

    def test_rollback_unknown_handle_is_noop(self):
        reconciler = seeded()
        self.assertIsNone(reconciler.rollback(999))

    def test_confirm_merges_server_row(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic("order-1", {"notes": "x"})
        server = Entity("order-1", {"notes": "x", "total_amount": 100}, T2)
        mutation = reconciler.confirm(handle, server)
        entity = reconciler.get("order-1")
        self.assertEqual(mutation.state, MutationState.CONFIRMED)
        self.assertEqual(entity.get("total_amount"), 100)
        self.assertEqual(entity.updated_at, T2)

    def test_confirm_without_server_row_keeps_optimistic_value(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic("order-1", {"status": "confirmed"})
        reconciler.confirm(handle)
        self.assertEqual(reconciler.get("order-1").get("status"), "confirmed")
        self.assertEqual(reconciler.pending(), [])

    def test_confirm_keeps_fields_of_later_pending_mutation(self):
        reconciler = seeded()
        first = reconciler.apply_optimistic("order-1", {"status": "confirmed"})
        reconciler.apply_optimistic("order-1", {"status": "completed"})
        reconciler.confirm(first, Entity("order-1", {"status": "confirmed"}, T1))
        self.assertEqual(reconciler.get("order-1").get("status"), "completed")

    def test_rollback_hands_pre_value_to_later_mutation(self):
        reconciler = seeded()
        first = reconciler.apply_optimistic("order-1", {"status": "confirmed"})
        second = reconciler.apply_optimistic("order-1", {"status": "completed"})

        reconciler.rollback(first)
        self.assertEqual(reconciler.get("order-1").get("status"), "completed")

        reconciler.rollback(second)
        self.assertEqual(reconciler.get("order-1").get("status"), "pending")

    def test_rollback_keeps_version_of_confirmed_sibling(self):
        reconciler = seeded(make_order(updated_at=T0))
        first = reconciler.apply_optimistic("order-1", {"status": "confirmed"})
        second = reconciler.apply_optimistic("order-1", {"notes": "late"})
        reconciler.confirm(first, Entity("order-1", {"status": "confirmed"}, T1))

        reconciler.rollback(second)
        entity = reconciler.get("order-1")
        self.assertEqual(entity.get("status"), "confirmed")
        self.assertFalse(entity.has("notes"))
        self.assertEqual(entity.updated_at, T1)

    def test_removal_and_rollback(self):
        reconciler = seeded()
        before = reconciler.get("order-1")
        handle = reconciler.apply_optimistic_removal("order-1")
        self.assertNotIn("order-1", reconciler.data)
        reconciler.rollback(handle)
        self.assertEqual(reconciler.get("order-1"), before)

    def test_confirmed_removal_stays_removed(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic_removal("order-1")
        reconciler.confirm(handle)
        self.assertNotIn("order-1", reconciler.data)


class TestRemoteEvents(unittest.TestCase):

    def test_insert_adds_matching_entity(self):
        reconciler = seeded(criteria=EntityFilter(statuses=ACTIVE_ORDER_STATUSES))
        self.assertTrue(reconciler.on_remote_event(insert_event(make_order("order-2"))))
        self.assertIn("order-2", reconciler.data)

    def test_insert_skips_non_matching_entity(self):
        reconciler = seeded(criteria=EntityFilter(statuses=ACTIVE_ORDER_STATUSES))
        self.assertFalse(reconciler.on_remote_event(insert_event(make_order("order-2", status="cancelled"))))
        self.assertNotIn("order-2", reconciler.data)

    def test_insert_skips_hidden_entity(self):
        criteria = EntityFilter(visibility_field="show_in_provider")
        reconciler = seeded(criteria=criteria)
        reconciler.on_remote_event(insert_event(make_order("order-2", show_in_provider=False)))
        reconciler.on_remote_event(insert_event(make_order("order-3", show_in_provider=None)))
        self.assertNotIn("order-2", reconciler.data)
        self.assertIn("order-3", reconciler.data)

    def test_insert_for_known_id_is_ignored(self):
        reconciler = seeded()
        before = reconciler.data
        self.assertFalse(reconciler.on_remote_event(insert_event(make_order(notes="echo"))))
        self.assertIs(reconciler.data, before)

    def test_update_merges_carried_fields(self):
        reconciler = seeded(make_order(notes="keep"))
        reconciler.on_remote_event(update_event("order-1", status="confirmed"))
        entity = reconciler.get("order-1")
        self.assertEqual(entity.get("status"), "confirmed")
        self.assertEqual(entity.get("notes"), "keep")
        self.assertEqual(entity.updated_at, T1)

    def test_update_leaving_filter_removes_entity(self):
        reconciler = seeded(criteria=EntityFilter(statuses=ACTIVE_ORDER_STATUSES))
        self.assertTrue(reconciler.on_remote_event(update_event("order-1", status="cancelled")))
        self.assertNotIn("order-1", reconciler.data)

    def test_update_hiding_entity_removes_it(self):
        reconciler = seeded(criteria=EntityFilter(visibility_field="show_in_provider"))
        reconciler.on_remote_event(update_event("order-1", show_in_provider=False))
        self.assertNotIn("order-1", reconciler.data)

    def test_update_for_absent_id_adds_when_matching(self):
        reconciler = seeded(criteria=EntityFilter(statuses=ACTIVE_ORDER_STATUSES))
        reconciler.on_remote_event(update_event("order-9", status="pending"))
        self.assertIn("order-9", reconciler.data)

    def test_stale_update_is_dropped(self):
        reconciler = seeded(make_order(updated_at=T2))
        self.assertFalse(reconciler.on_remote_event(update_event("order-1", updated_at=T1, status="confirmed")))
        self.assertEqual(reconciler.get("order-1").get("status"), "pending")

    def test_update_without_timestamp_is_applied(self):
        reconciler = seeded(make_order(updated_at=T2))
        reconciler.on_remote_event(update_event("order-1", updated_at=None, status="confirmed"))
        self.assertEqual(reconciler.get("order-1").get("status"), "confirmed")
        self.assertEqual(reconciler.get("order-1").updated_at, T2)

    def test_delete_removes_entity(self):
        reconciler = seeded()
        self.assertTrue(reconciler.on_remote_event(delete_event("order-1")))
        self.assertNotIn("order-1", reconciler.data)
        self.assertFalse(reconciler.on_remote_event(delete_event("order-1")))


class TestConflicts(unittest.TestCase):

    def test_concurrent_edit_remote_wins_and_confirm_does_not_reassert(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic("order-1", {"status": "confirmed"})

        reconciler.on_remote_event(update_event("order-1", updated_at=T2, status="cancelled"))
        self.assertEqual(reconciler.get("order-1").get("status"), "cancelled")

        reconciler.confirm(handle, Entity("order-1", {"status": "confirmed"}, T1))
        self.assertEqual(reconciler.get("order-1").get("status"), "cancelled")
        self.assertEqual(reconciler.get("order-1").updated_at, T2)

    def test_confirm_after_remote_event_adopts_newer_version_only(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic("order-1", {"notes": "mine"})
        reconciler.on_remote_event(update_event("order-1", updated_at=T1, status="confirmed"))
        reconciler.confirm(handle, Entity("order-1", {"notes": "server", "status": "pending"}, T2))
        entity = reconciler.get("order-1")
        self.assertEqual(entity.get("status"), "confirmed")
        self.assertEqual(entity.get("notes"), "mine")
        self.assertEqual(entity.updated_at, T2)

    def test_rollback_keeps_superseded_field(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic("order-1", {"status": "confirmed", "notes": "x"})
        reconciler.on_remote_event(update_event("order-1", status="cancelled"))

        mutation = reconciler.rollback(handle)
        entity = reconciler.get("order-1")
        self.assertEqual(mutation.superseded, {"status"})
        self.assertEqual(entity.get("status"), "cancelled")
        self.assertFalse(entity.has("notes"))
        self.assertEqual(entity.updated_at, T1)

    def test_remote_delete_supersedes_pending_mutation(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic("order-1", {"status": "confirmed"})
        reconciler.on_remote_event(delete_event("order-1"))
        self.assertIsNone(reconciler.rollback(handle))
        self.assertNotIn("order-1", reconciler.data)
        self.assertEqual(reconciler.pending(), [])

    def test_remote_update_does_not_resurrect_pending_removal(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic_removal("order-1")
        reconciler.on_remote_event(update_event("order-1", notes="remote"))
        self.assertNotIn("order-1", reconciler.data)

        reconciler.rollback(handle)
        self.assertEqual(reconciler.get("order-1").get("notes"), "remote")

    def test_reseed_supersedes_pending_mutations(self):
        reconciler = seeded()
        handle = reconciler.apply_optimistic("order-1", {"status": "confirmed"})
        reconciler.seed([make_order(status="cancelled", updated_at=T2)])
        reconciler.rollback(handle)
        self.assertEqual(reconciler.get("order-1").get("status"), "cancelled")


class TestListeners(unittest.TestCase):

    def test_listener_receives_every_snapshot(self):
        reconciler = ChangeReconciler()
        seen = []
        reconciler.add_listener(seen.append)
        reconciler.seed([make_order()])
        reconciler.apply_optimistic("order-1", {"status": "confirmed"})
        self.assertEqual(len(seen), 2)
        self.assertIs(seen[-1], reconciler.data)

    def test_raising_listener_does_not_stop_others(self):
        reconciler = ChangeReconciler()
        seen = []

        def broken(_):
            raise RuntimeError("boom")

        reconciler.add_listener(broken)
        reconciler.add_listener(seen.append)
        with self.assertLogs("tourdesk.reconciler", level="ERROR"):
            reconciler.seed([make_order()])
        self.assertEqual(len(seen), 1)

    def test_remover_unsubscribes(self):
        reconciler = ChangeReconciler()
        seen = []
        remove = reconciler.add_listener(seen.append)
        remove()
        remove()
        reconciler.seed([make_order()])
        self.assertEqual(seen, [])


class TestIsOlder(unittest.TestCase):

    def test_compares_across_offsets(self):
        self.assertTrue(is_older("2024-04-01T10:00:00+02:00", "2024-04-01T09:00:00Z"))
        self.assertFalse(is_older("2024-04-01T09:00:00Z", "2024-04-01T09:00:00+00:00"))

    def test_missing_timestamp_is_never_older(self):
        self.assertFalse(is_older(None, T1))
        self.assertFalse(is_older(T1, None))
