"""
Eligibility Evaluator Unit Tests
================================

[UNIT] Tests for compliance/evaluator.py: rule ordering, expiry boundary,
audit side effect.
"""

import pytest
import pytest_asyncio

from conftest import DAY, NOW, POOL_ID, USER_A, USER_B, USER_C


@pytest_asyncio.fixture
async def configured(evaluator, pool_rules):
    """Evaluator with POOL_ID requiring the default mask."""
    from compliance.bitmap import default_rule_mask

    await pool_rules.set_rule(POOL_ID, default_rule_mask())
    return evaluator


class TestReasonCode:

    def test_numeric_values(self):
        """Codes match the hook contract's uint8 values."""
        from compliance.evaluator import ReasonCode

        assert [int(r) for r in ReasonCode] == [0, 1, 2, 3, 4]
        assert ReasonCode(3) is ReasonCode.NOT_ELIGIBLE

    def test_messages(self):
        from compliance.evaluator import ReasonCode

        assert ReasonCode.OK.message == "OK"
        assert "Get Verified" in ReasonCode.NOT_REGISTERED.message
        assert ReasonCode.POOL_NOT_CONFIGURED.message == "Pool not configured."


class TestEligibilityEvaluator:

    async def test_pool_not_configured_first(self, evaluator):
        """An unconfigured pool wins over a missing credential."""
        from compliance.evaluator import ReasonCode

        result = await evaluator.check(USER_C, POOL_ID, now=NOW)

        assert result.allowed is False
        assert result.reason is ReasonCode.POOL_NOT_CONFIGURED
        assert result.rule_mask_ref == "0x0"

    async def test_not_registered(self, configured):
        from compliance.evaluator import ReasonCode

        result = await configured.check(USER_C, POOL_ID, now=NOW)

        assert result.reason is ReasonCode.NOT_REGISTERED
        assert result.user_bitmap_ref == "0x0"
        assert result.rule_mask_ref == "0x803"

    async def test_ok(self, configured, credentials, eligible_ciphertext):
        from core.receipts import is_receipt_id
        from compliance.evaluator import ReasonCode

        await credentials.register(USER_A, eligible_ciphertext, NOW + 30 * DAY)

        result = await configured.check(USER_A, POOL_ID, now=NOW)

        assert result.allowed is True
        assert result.reason is ReasonCode.OK
        assert result.user_bitmap_ref == eligible_ciphertext
        assert is_receipt_id(result.receipt_id)

    async def test_not_eligible(self, configured, credentials, ineligible_ciphertext):
        from compliance.evaluator import ReasonCode

        await credentials.register(USER_B, ineligible_ciphertext, NOW + 30 * DAY)

        result = await configured.check(USER_B, POOL_ID, now=NOW)

        assert result.allowed is False
        assert result.reason is ReasonCode.NOT_ELIGIBLE

    async def test_expiry_equal_to_now_is_expired(self, configured, credentials, eligible_ciphertext):
        from compliance.evaluator import ReasonCode

        await credentials.register(USER_A, eligible_ciphertext, NOW)

        result = await configured.check(USER_A, POOL_ID, now=NOW)

        assert result.reason is ReasonCode.EXPIRED

    async def test_expiry_one_second_later_is_valid(self, configured, credentials, eligible_ciphertext):
        from compliance.evaluator import ReasonCode

        await credentials.register(USER_A, eligible_ciphertext, NOW + 1)

        assert (await configured.check(USER_A, POOL_ID, now=NOW)).reason is ReasonCode.OK

    async def test_expired_wins_over_not_eligible(self, configured, credentials, ineligible_ciphertext):
        from compliance.evaluator import ReasonCode

        await credentials.register(USER_B, ineligible_ciphertext, NOW - 1)

        assert (await configured.check(USER_B, POOL_ID, now=NOW)).reason is ReasonCode.EXPIRED

    async def test_revoked_is_not_eligible(self, configured, credentials, eligible_ciphertext):
        """A revoked profile still exists but carries an empty bitmap."""
        from compliance.evaluator import ReasonCode

        await credentials.register(USER_A, eligible_ciphertext, NOW + DAY)
        await credentials.revoke(USER_A)

        assert (await configured.check(USER_A, POOL_ID, now=NOW)).reason is ReasonCode.NOT_ELIGIBLE

    async def test_every_check_is_audited(self, configured, credentials, audit_log, eligible_ciphertext):
        await credentials.register(USER_A, eligible_ciphertext, NOW + DAY)

        first = await configured.check(USER_A, POOL_ID, now=NOW)
        second = await configured.check(USER_A, POOL_ID, now=NOW + DAY)

        entries = await audit_log.list(USER_A)

        assert [e.reason for e in entries] == ["EXPIRED", "OK"]
        assert entries[0].receipt_id == second.receipt_id
        assert entries[1].receipt_id == first.receipt_id
        assert entries[1].timestamp == NOW
        assert first.receipt_id != second.receipt_id

    async def test_pool_not_configured_is_audited(self, evaluator, audit_log):
        await evaluator.check(USER_C, POOL_ID, now=NOW)

        entries = await audit_log.list(USER_C)

        assert len(entries) == 1
        assert entries[0].reason == "POOL_NOT_CONFIGURED"
        assert entries[0].allowed is False

    async def test_zero_rule_after_reset(self, configured, pool_rules, credentials, eligible_ciphertext):
        """Setting the mask back to 0 un-configures the pool."""
        from compliance.evaluator import ReasonCode

        await credentials.register(USER_A, eligible_ciphertext, NOW + DAY)
        await pool_rules.set_rule(POOL_ID, 0)

        assert (await configured.check(USER_A, POOL_ID, now=NOW)).reason is ReasonCode.POOL_NOT_CONFIGURED

    async def test_storage_error_propagates(self, configured, memory_store):
        from core.storage import StorageError

        await memory_store.set("profiles", USER_A, {"bitmapCiphertext": "0xzz", "expiry": NOW + DAY})

        with pytest.raises(StorageError):
            await configured.check(USER_A, POOL_ID, now=NOW)

    async def test_negative_stored_ciphertext_is_not_all_ones(self, configured, pool_rules, memory_store):
        """A hand-written negative record must not satisfy a wide mask."""
        from core.storage import StorageError

        await pool_rules.set_rule(POOL_ID, (1 << 200) | 2051)
        await memory_store.set("profiles", USER_A, {"bitmapCiphertext": "-0x1", "expiry": NOW + DAY})

        with pytest.raises(StorageError):
            await configured.check(USER_A, POOL_ID, now=NOW)

    async def test_missing_bucket_bit(self, configured, credentials):
        """Accredited EU user in the 100 bucket fails the default mask."""
        from compliance.bitmap import Bucket, Region, build_bitmap
        from compliance.evaluator import ReasonCode
        from compliance.fhe import encrypt_bitmap

        ciphertext = encrypt_bitmap(build_bitmap(True, Region.EU, Bucket.B100))
        await credentials.register(USER_B, ciphertext, NOW + DAY)

        result = await configured.check(USER_B, POOL_ID, now=NOW)

        assert result.allowed is False
        assert result.reason is ReasonCode.NOT_ELIGIBLE

    async def test_twenty_five_checks_keep_twenty(self, configured, credentials, audit_log, eligible_ciphertext):
        await credentials.register(USER_A, eligible_ciphertext, NOW + DAY)

        results = [await configured.check(USER_A, POOL_ID, now=NOW + i) for i in range(25)]
        entries = await audit_log.list(USER_A)

        assert len(entries) == 20
        assert entries[0].receipt_id == results[-1].receipt_id
        assert entries[-1].timestamp == NOW + 5
        assert len({r.receipt_id for r in results}) == 25
