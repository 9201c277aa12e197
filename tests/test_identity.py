import asyncio
import unittest

from messaging_toolkit.conversation_database.in_memory import InMemoryProfileDatabase, InMemoryStore
from messaging_toolkit.errors import InvalidPhoneNumberError, PhoneNumberTakenError, ProfileUpdateError, StoreError
from messaging_toolkit.sync.identity import ProfileGate, normalize_phone_number

from tests.support import ALICE, BOB, seed_profile


class CountingProfileDatabase(InMemoryProfileDatabase):
    def __init__(self, store: InMemoryStore) -> None:
        super().__init__(store)
        self.creates = 0

    async def get_profile_by_id(self, user_id):
        # Yield so concurrent resolutions overlap.
        await asyncio.sleep(0)
        return await super().get_profile_by_id(user_id)

    async def create_profile(self, profile):
        self.creates += 1
        return await super().create_profile(profile)


class UnreachableProfileDatabase(InMemoryProfileDatabase):
    async def get_profile_by_id(self, user_id):
        raise StoreError("connection refused")

    async def update_phone_number(self, user_id, phone_number):
        raise StoreError("connection refused")


class ProfileGateTests(unittest.IsolatedAsyncioTestCase):
    async def test_first_sign_in_creates_profile_and_needs_onboarding(self):
        store = InMemoryStore()
        state = await ProfileGate(InMemoryProfileDatabase(store)).resolve(ALICE)

        self.assertTrue(state.needs_onboarding)
        self.assertEqual(state.profile.display_name, "Alice Johnson")
        self.assertEqual(store.profiles["u1"].email, "alice@example.com")
        self.assertTrue(store.profiles["u1"].online)

    async def test_existing_profile_with_phone_skips_onboarding(self):
        store = InMemoryStore()
        seed_profile(store, BOB)
        state = await ProfileGate(InMemoryProfileDatabase(store)).resolve(BOB)
        self.assertFalse(state.needs_onboarding)

    async def test_concurrent_resolutions_create_once(self):
        store = InMemoryStore()
        db = CountingProfileDatabase(store)
        gate = ProfileGate(db)

        states = await asyncio.gather(*(gate.resolve(ALICE) for _ in range(5)))

        self.assertEqual(db.creates, 1)
        self.assertEqual(len(store.profiles), 1)
        self.assertTrue(all(s.profile.id == "u1" for s in states))

    async def test_store_failure_fails_safe(self):
        state = await ProfileGate(UnreachableProfileDatabase(InMemoryStore())).resolve(ALICE)
        self.assertIsNone(state.profile)
        self.assertTrue(state.needs_onboarding)

    async def test_complete_onboarding_normalizes_and_saves(self):
        store = InMemoryStore()
        gate = ProfileGate(InMemoryProfileDatabase(store))
        await gate.resolve(ALICE)

        profile = await gate.complete_onboarding("u1", "0041 79 123 45 67")

        self.assertEqual(profile.phone_number, "+41791234567")
        self.assertEqual(store.profiles["u1"].phone_number, "+41791234567")
        self.assertFalse((await gate.resolve(ALICE)).needs_onboarding)

    async def test_taken_phone_number(self):
        store = InMemoryStore()
        seed_profile(store, BOB, phone_number="+41791234567")
        gate = ProfileGate(InMemoryProfileDatabase(store))
        await gate.resolve(ALICE)

        with self.assertRaises(PhoneNumberTakenError):
            await gate.complete_onboarding("u1", "+41791234567")

    async def test_store_failure_on_onboarding(self):
        gate = ProfileGate(UnreachableProfileDatabase(InMemoryStore()))
        with self.assertRaises(ProfileUpdateError):
            await gate.complete_onboarding("u1", "+41791234567")


class PhoneNumberTests(unittest.TestCase):
    def test_accepts_international_formats(self):
        self.assertEqual(normalize_phone_number("+1 (415) 555-0100"), "+14155550100")
        self.assertEqual(normalize_phone_number("0044.20.7946.0958"), "+442079460958")

    def test_rejects_invalid_numbers(self):
        for value in ("", "079 123 45 67", "+0123456789", "+12", "+41abc1234567"):
            with self.subTest(value=value), self.assertRaises(InvalidPhoneNumberError):
                normalize_phone_number(value)


if __name__ == "__main__":
    unittest.main()
