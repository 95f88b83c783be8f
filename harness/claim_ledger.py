"""
DynamoDB claim ledger for one-time passcodes.

The conditional put keyed by MessageId is the single serialization point
across every worker in the fleet: the first successful insert owns the code.
"""
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from harness_errors import ClaimLedgerError


DEFAULT_TABLE = 'OTPClaims'


@dataclass(frozen=True)
class OtpClaimRecord:
    message_id: str
    test_run_id: str
    otp: str
    username: str
    claimed_at: str
    message_timestamp: float

    @classmethod
    def create(cls, message_id: str, test_run_id: str, otp: str, username: str,
               message_timestamp: float, claimed_at: Optional[datetime] = None) -> 'OtpClaimRecord':
        claimed_at = claimed_at or datetime.now(timezone.utc)
        return cls(message_id, test_run_id, otp, username, claimed_at.isoformat(), message_timestamp)

    def to_item(self) -> Dict[str, Any]:
        """Render the DynamoDB item. MessageTimestamp is epoch milliseconds."""
        return {
            'MessageId': self.message_id,
            'TestRunId': self.test_run_id,
            'Otp': self.otp,
            'Username': self.username,
            'ClaimedAt': self.claimed_at,
            'MessageTimestamp': Decimal(int(self.message_timestamp * 1000)),
        }


def get_claims_table(table_name: Optional[str] = None, region: Optional[str] = None):
    """Get the claims table resource (OTP_DDB_TABLE / AWS_REGION when not given)."""
    dynamodb = boto3.resource('dynamodb', region_name=region or os.environ.get('AWS_REGION', 'ap-southeast-2'))
    return dynamodb.Table(table_name or os.environ.get('OTP_DDB_TABLE', DEFAULT_TABLE))


class DynamoClaimLedger:
    """put_if_absent over a DynamoDB table keyed by MessageId."""

    def __init__(self, table=None):
        self._table = table

    @property
    def table(self):
        if self._table is None:
            self._table = get_claims_table()
        return self._table

    def put_if_absent(self, record: OtpClaimRecord) -> bool:
        """
        Atomically insert a claim record.

        Args:
            record: Claim to insert

        Returns:
            True if this caller now owns the message, False if it was already claimed

        Raises:
            ClaimLedgerError: Any failure other than a condition conflict
        """
        try:
            self.table.put_item(
                Item=record.to_item(),
                ConditionExpression='attribute_not_exists(MessageId)'
            )
            return True
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ConditionalCheckFailedException':
                return False
            raise ClaimLedgerError(
                f"Claim ledger write failed: {e.response.get('Error', {}).get('Message', e)}",
                {'message_id': record.message_id, 'test_run_id': record.test_run_id},
            ) from e
        except BotoCoreError as e:
            raise ClaimLedgerError(
                f"Claim ledger unreachable: {e}",
                {'message_id': record.message_id, 'test_run_id': record.test_run_id},
            ) from e

    def get_claim(self, message_id: str) -> Optional[Dict[str, Any]]:
        """Read back a claim, or None if the message was never claimed."""
        try:
            response = self.table.get_item(Key={'MessageId': message_id})
        except (ClientError, BotoCoreError) as e:
            raise ClaimLedgerError(f"Claim ledger read failed: {e}", {'message_id': message_id}) from e
        return response.get('Item')
