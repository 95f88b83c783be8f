"""
Unit tests for claim_ledger module.

Tests the DynamoDB claim ledger including:
- Conditional insert keyed by MessageId
- Conflict reporting (second claimant loses)
- Item shape (epoch-millisecond MessageTimestamp)
- Non-conflict failures surfaced as ClaimLedgerError
"""
import pytest
import sys
from pathlib import Path
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock
from botocore.exceptions import ClientError, EndpointConnectionError

# Add harness directory to path
harness_dir = Path(__file__).parent.parent.parent / 'harness'
sys.path.insert(0, str(harness_dir))

from claim_ledger import DynamoClaimLedger, OtpClaimRecord, get_claims_table
from harness_errors import ClaimLedgerError


def make_record(message_id='msg-001', test_run_id='run_1', username='cm1@example.com.dev'):
    return OtpClaimRecord.create(
        message_id=message_id,
        test_run_id=test_run_id,
        otp='482913',
        username=username,
        message_timestamp=1_736_937_000.5,
        claimed_at=datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc),
    )


def client_error(code, message='boom'):
    return ClientError({'Error': {'Code': code, 'Message': message}}, 'PutItem')


# ==============================================================================
# OtpClaimRecord Tests
# ==============================================================================

@pytest.mark.unit
class TestOtpClaimRecord:
    """Tests for OtpClaimRecord item rendering."""

    def test_to_item(self):
        item = make_record().to_item()
        assert item == {
            'MessageId': 'msg-001',
            'TestRunId': 'run_1',
            'Otp': '482913',
            'Username': 'cm1@example.com.dev',
            'ClaimedAt': '2025-01-15T10:30:00+00:00',
            'MessageTimestamp': Decimal(1_736_937_000_500),
        }


# ==============================================================================
# DynamoClaimLedger Tests (moto)
# ==============================================================================

@pytest.mark.unit
class TestDynamoClaimLedger:
    """Tests for DynamoClaimLedger against a mocked table."""

    def test_first_claim_wins(self, mock_claims_table):
        ledger = DynamoClaimLedger(mock_claims_table)

        assert ledger.put_if_absent(make_record()) is True

        item = ledger.get_claim('msg-001')
        assert item['TestRunId'] == 'run_1'
        assert item['Username'] == 'cm1@example.com.dev'

    def test_second_claim_loses(self, mock_claims_table):
        """Test the conditional insert rejects a second claimant."""
        ledger = DynamoClaimLedger(mock_claims_table)
        ledger.put_if_absent(make_record(test_run_id='run_1'))

        assert ledger.put_if_absent(make_record(test_run_id='run_2')) is False
        assert ledger.get_claim('msg-001')['TestRunId'] == 'run_1'

    def test_different_messages_both_claimed(self, mock_claims_table):
        ledger = DynamoClaimLedger(mock_claims_table)
        assert ledger.put_if_absent(make_record('msg-001')) is True
        assert ledger.put_if_absent(make_record('msg-002')) is True

    def test_unclaimed_message_reads_none(self, mock_claims_table):
        assert DynamoClaimLedger(mock_claims_table).get_claim('never') is None

    def test_default_table_from_environment(self, mock_claims_table):
        """Test the lazily created table honours OTP_DDB_TABLE and AWS_REGION."""
        ledger = DynamoClaimLedger()
        assert ledger.put_if_absent(make_record()) is True
        assert get_claims_table().name == 'OTPClaims'


@pytest.mark.unit
class TestLedgerErrors:
    """Tests for non-conflict failures."""

    def test_throttling_raises_ledger_error(self):
        table = MagicMock()
        table.put_item.side_effect = client_error('ProvisionedThroughputExceededException', 'slow down')

        with pytest.raises(ClaimLedgerError) as exc_info:
            DynamoClaimLedger(table).put_if_absent(make_record())

        assert 'slow down' in str(exc_info.value)
        assert exc_info.value.context['message_id'] == 'msg-001'

    def test_connection_error_raises_ledger_error(self):
        table = MagicMock()
        table.put_item.side_effect = EndpointConnectionError(endpoint_url='https://dynamodb.ap-southeast-2.amazonaws.com')

        with pytest.raises(ClaimLedgerError):
            DynamoClaimLedger(table).put_if_absent(make_record())

    def test_conditional_failure_is_not_an_error(self):
        table = MagicMock()
        table.put_item.side_effect = client_error('ConditionalCheckFailedException')
        assert DynamoClaimLedger(table).put_if_absent(make_record()) is False

    def test_put_uses_message_id_condition(self):
        table = MagicMock()
        DynamoClaimLedger(table).put_if_absent(make_record())
        assert table.put_item.call_args.kwargs['ConditionExpression'] == 'attribute_not_exists(MessageId)'
