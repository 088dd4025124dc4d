# -*- coding: utf-8 -*-

from __future__ import annotations

import re
import unittest

from mymacro.kv import MemoryKeyValueStore
from mymacro.referrals import MemoryReferrerDirectory, ReferralLedger
from mymacro.referrals.ledger import (
    FRIENDS_KEY,
    PENDING_REFERRALS_KEY,
    REFERRAL_CODE_KEY,
    USED_REFERRAL_CODES_KEY,
    VERIFIED_REFERRALS_KEY,
    clean_display_name,
)
from mymacro.referrals.models import ReferralStatus

GENERATED_CODE = re.compile(r"^[a-z0-9]{0,10}-[A-Z0-9]{4}$")


def _ledger(user_id: str, name: str, directory=None, store=None) -> ReferralLedger:
    return ReferralLedger(
        store if store is not None else MemoryKeyValueStore(),
        user_id=user_id,
        display_name=name,
        directory=directory,
        credit_amount=5,
        share_base_url="https://mymacro.ai/u/",
        verify_delay=0,
    )


class TestReferralCodes(unittest.TestCase):
    def test_generated_codes_match_format(self) -> None:
        ledger = _ledger("u1", "Joshua")
        for name in ["Joshua", "Ana María!", "x" * 40, "42", "   ", "日本語"]:
            code = ledger.generate_code(name, "u1")
            self.assertRegex(code.code, GENERATED_CODE)
            self.assertEqual(code.user_id, "u1")
            self.assertEqual(code.total_referrals, 0)
            self.assertEqual(code.successful_referrals, 0)
            self.assertEqual(code.total_credits_earned, 0)

    def test_clean_display_name(self) -> None:
        self.assertEqual(clean_display_name("Joshua Tree-House 99"), "joshuatree")
        self.assertEqual(clean_display_name(""), "")

    def test_share_link_and_persistence(self) -> None:
        store = MemoryKeyValueStore()
        ledger = _ledger("u1", "Joshua", store=store)
        code = ledger.get_or_create_code()
        self.assertTrue(code.code.startswith("joshua-"))
        self.assertEqual(code.share_link, f"https://mymacro.ai/u/joshua?ref={code.code}")
        self.assertEqual(store.get_json(REFERRAL_CODE_KEY)["code"], code.code)
        # Stable across calls and across ledger instances on the same store.
        self.assertEqual(ledger.get_or_create_code().code, code.code)
        self.assertEqual(_ledger("u1", "Someone Else", store=store).get_or_create_code().code, code.code)

    def test_corrupt_cached_code_is_regenerated(self) -> None:
        store = MemoryKeyValueStore({REFERRAL_CODE_KEY: "{not json"})
        ledger = _ledger("u1", "Joshua", store=store)
        self.assertEqual(ledger.integrity(), [REFERRAL_CODE_KEY])
        code = ledger.get_or_create_code()
        self.assertRegex(code.code, GENERATED_CODE)
        self.assertEqual(ledger.integrity(), [])

    def test_directory_registration(self) -> None:
        directory = MemoryReferrerDirectory()
        ledger = _ledger("u1", "Joshua", directory=directory)
        code = ledger.get_or_create_code()
        self.assertEqual(directory.lookup(code.code), "u1")
        self.assertEqual(directory.lookup(code.code.upper()), "u1")

    def test_share_message(self) -> None:
        ledger = _ledger("u1", "Joshua")
        message = ledger.share_message("joshua-A7K2", "Joshua")
        self.assertIn("get $5 off", message)
        self.assertIn("Use my code: joshua-A7K2", message)
        self.assertTrue(message.endswith("https://mymacro.ai/u/joshua?ref=joshua-A7K2"))


class TestReferralValidation(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.directory = MemoryReferrerDirectory()
        self.alice = _ledger("alice-id", "Alice", directory=self.directory)
        self.bob = _ledger("bob-id", "Bob", directory=self.directory)
        self.alice_code = self.alice.get_or_create_code().code

    async def test_invalid_format(self) -> None:
        for bad in ["", "alice", "alice-ABC", "alice-ABCDE", "-ABCD", "al ice-ABCD", "alice_ABCD"]:
            result = await self.bob.validate(bad, "bob-id")
            self.assertFalse(result.valid, bad)
            self.assertEqual(result.reason, "Invalid code format")

    async def test_non_ascii_lookalikes_are_invalid_format(self) -> None:
        for bad in ["\u017fam-ABCD", "\u212aim-ABCD", "sam-\u212aBCD"]:
            result = await self.bob.validate(bad, "bob-id")
            self.assertFalse(result.valid, bad)
            self.assertEqual(result.reason, "Invalid code format")

    async def test_own_code_rejected(self) -> None:
        result = await self.alice.validate(self.alice_code, "alice-id")
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, "Cannot use your own code")

        result = await self.alice.validate(self.alice_code.upper(), "alice-id")
        self.assertEqual(result.reason, "Cannot use your own code")

    async def test_own_code_rejected_from_another_device(self) -> None:
        # Same account, fresh store: the directory still knows who owns the code.
        other_device = _ledger("alice-id", "Alice", directory=self.directory)
        result = await other_device.validate(self.alice_code, "alice-id")
        self.assertEqual(result.reason, "Cannot use your own code")

    async def test_unknown_code(self) -> None:
        result = await self.bob.validate("nobody-ZZZZ", "bob-id")
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, "Code not found")

    async def test_valid_code(self) -> None:
        result = await self.bob.validate(self.alice_code, "bob-id")
        self.assertTrue(result.valid)
        self.assertIsNone(result.reason)
        self.assertEqual(result.referrer_id, "alice-id")

    async def test_directory_failure_is_reported(self) -> None:
        class BrokenDirectory:
            def register(self, code: str, user_id: str) -> None:
                return None

            def lookup(self, code: str):
                raise ConnectionError("backend down")

        ledger = _ledger("carol-id", "Carol", directory=BrokenDirectory())
        with self.assertLogs("mymacro.referrals.ledger", level="ERROR"):
            result = await ledger.validate(self.alice_code, "carol-id")
        self.assertFalse(result.valid)
        self.assertEqual(result.reason, "Verification failed")

    async def test_without_directory_referrer_is_derived(self) -> None:
        ledger = _ledger("dave-id", "Dave")
        result = await ledger.validate("Alice-AB12", "dave-id")
        self.assertTrue(result.valid)
        self.assertEqual(result.referrer_id, "user_alice")

    async def test_redeem_twice(self) -> None:
        first = await self.bob.redeem(self.alice_code, "bob-id")
        self.assertTrue(first.success)
        self.assertEqual(first.credit_amount, 5)
        self.assertEqual(self.bob.used_codes(), [self.alice_code.lower()])

        again = await self.bob.validate(self.alice_code, "bob-id")
        self.assertFalse(again.valid)
        self.assertEqual(again.reason, "Code already used")

        second = await self.bob.redeem(self.alice_code.upper(), "bob-id")
        self.assertFalse(second.success)
        self.assertEqual(second.error, "Code already used")
        self.assertEqual(len(self.bob.used_codes()), 1)

    async def test_redeem_failure_does_not_mark_used(self) -> None:
        result = await self.bob.redeem("bad", "bob-id")
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Invalid code format")
        self.assertIsNone(self.bob.store.get_json(USED_REFERRAL_CODES_KEY))

    async def test_corrupt_used_codes_are_treated_as_empty(self) -> None:
        self.bob.store.set(USED_REFERRAL_CODES_KEY, "[broken")
        result = await self.bob.redeem(self.alice_code, "bob-id")
        self.assertTrue(result.success)
        self.assertEqual(self.bob.used_codes(), [self.alice_code.lower()])


class TestReferralLifecycle(unittest.TestCase):
    def setUp(self) -> None:
        self.ledger = _ledger("u1", "Joshua")

    def test_create_pending(self) -> None:
        referral = self.ledger.create_pending("Sam", "sam@example.com")
        own = self.ledger.get_or_create_code()
        self.assertEqual(referral.status, ReferralStatus.PENDING)
        self.assertEqual(referral.referrer_id, "u1")
        self.assertEqual(referral.referrer_code, own.code)
        self.assertFalse(referral.credit_applied)
        self.assertEqual(referral.nudge_count, 0)
        self.assertEqual([r.id for r in self.ledger.pending()], [referral.id])

    def test_nudge(self) -> None:
        referral = self.ledger.create_pending("Sam")
        self.assertTrue(self.ledger.nudge(referral.id))
        self.assertTrue(self.ledger.nudge(referral.id))
        stored = self.ledger.pending()[0]
        self.assertEqual(stored.nudge_count, 2)
        self.assertIsNotNone(stored.last_nudge_at)
        self.assertFalse(self.ledger.nudge("ref_missing"))

    def test_verify_moves_exactly_one_record(self) -> None:
        keep = self.ledger.create_pending("Kim")
        referral = self.ledger.create_pending("Sam")

        verified = self.ledger.verify(referral.id)
        assert verified is not None
        self.assertEqual(verified.id, referral.id)
        self.assertEqual(verified.status, ReferralStatus.VERIFIED)
        self.assertTrue(verified.credit_applied)
        self.assertIsNotNone(verified.verified_at)

        self.assertEqual([r.id for r in self.ledger.pending()], [keep.id])
        matches = [r for r in self.ledger.verified() if r.id == referral.id]
        self.assertEqual(len(matches), 1)
        self.assertTrue(matches[0].credit_applied)

        self.assertIsNone(self.ledger.verify(referral.id))
        self.assertIsNone(self.ledger.verify("ref_missing"))

    def test_verify_leaves_malformed_pending_entry_in_place(self) -> None:
        self.ledger.store.set_json(PENDING_REFERRALS_KEY, [{"id": "ref_broken", "nudge_count": "many"}])
        with self.assertLogs("mymacro.referrals.ledger", level="WARNING"):
            self.assertIsNone(self.ledger.verify("ref_broken"))
        self.assertEqual(self.ledger.store.get_json(PENDING_REFERRALS_KEY), [{"id": "ref_broken", "nudge_count": "many"}])
        self.assertIsNone(self.ledger.store.get_json(VERIFIED_REFERRALS_KEY))

    def test_stats(self) -> None:
        a = self.ledger.create_pending("A")
        self.ledger.create_pending("B")
        self.ledger.verify(a.id)
        stats = self.ledger.stats()
        self.assertEqual(stats.pending, 1)
        self.assertEqual(stats.verified, 1)
        self.assertEqual(stats.total_credits, 5)
        self.assertEqual(stats.friends, 0)

    def test_corrupt_pending_list_reads_as_empty(self) -> None:
        self.ledger.store.set(PENDING_REFERRALS_KEY, "not json")
        with self.assertLogs("mymacro.referrals.ledger", level="WARNING"):
            self.assertEqual(self.ledger.pending(), [])
        self.assertIn(PENDING_REFERRALS_KEY, self.ledger.integrity())


class TestFriends(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.directory = MemoryReferrerDirectory()
        self.alice = _ledger("alice-id", "Alice", directory=self.directory)
        self.bob = _ledger("bob-id", "Bob", directory=self.directory)
        self.alice_code = self.alice.get_or_create_code().code

    async def test_add_and_remove_friend(self) -> None:
        result = await self.bob.add_friend(self.alice_code)
        self.assertTrue(result.success)
        friend = result.friend
        assert friend is not None
        self.assertEqual(friend.user_id, "alice-id")
        self.assertEqual(friend.name, "Alice")
        self.assertEqual(friend.status, "active")
        self.assertGreaterEqual(friend.score, 1000)
        self.assertLess(friend.score, 6000)
        self.assertGreaterEqual(friend.streak, 0)
        self.assertLess(friend.streak, 30)
        self.assertEqual([f.id for f in self.bob.friends()], [friend.id])

        self.assertTrue(self.bob.remove_friend(friend.id))
        self.assertEqual(self.bob.friends(), [])
        self.assertFalse(self.bob.remove_friend(friend.id))

    async def test_add_friend_with_invalid_code(self) -> None:
        result = await self.bob.add_friend("nope")
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Invalid code format")
        self.assertIsNone(self.bob.store.get_json(FRIENDS_KEY))

    async def test_cannot_befriend_self(self) -> None:
        result = await self.alice.add_friend(self.alice_code)
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Cannot use your own code")


if __name__ == "__main__":
    unittest.main()
