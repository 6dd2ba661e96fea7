"""Persistence for OAuth tokens."""
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional

import boto3
from botocore.exceptions import ClientError

from processor.models import AuthTokens

logger = logging.getLogger(__name__)


class TokenStore(ABC):
    """Load/save/clear interface for a user's tokens."""

    @abstractmethod
    def load(self) -> Optional[AuthTokens]:
        """Return the stored tokens, or None."""

    @abstractmethod
    def save(self, tokens: AuthTokens) -> None:
        """Persist tokens, replacing any stored ones."""

    @abstractmethod
    def clear(self) -> None:
        """Remove stored tokens."""


class InMemoryTokenStore(TokenStore):
    """Token store that lives for the lifetime of the process."""

    def __init__(self, tokens: Optional[AuthTokens] = None):
        self._tokens = tokens

    def load(self) -> Optional[AuthTokens]:
        return self._tokens

    def save(self, tokens: AuthTokens) -> None:
        self._tokens = tokens

    def clear(self) -> None:
        self._tokens = None


class DynamoDBTokenStore(TokenStore):
    """Token store keeping one item per session in a DynamoDB table."""

    def __init__(self, table_name: str, session_id: str):
        """
        Initialize DynamoDB table reference.

        Args:
            table_name: Name of the DynamoDB table (hash key `session_id`)
            session_id: Session whose tokens this store manages
        """
        self.table_name = table_name
        self.session_id = session_id
        self.dynamodb = boto3.resource('dynamodb')
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBTokenStore for table: {table_name}")

    def load(self) -> Optional[AuthTokens]:
        try:
            response = self.table.get_item(Key={'session_id': self.session_id})
        except ClientError as e:
            logger.error(f"Error loading tokens from DynamoDB: {e}")
            raise

        item = response.get('Item')
        if not item:
            return None

        try:
            return self._item_to_tokens(item)
        except (KeyError, ValueError) as e:
            # Invalid stored tokens are cleared rather than reused
            logger.warning(f"Invalid stored tokens, clearing: {e}")
            self.clear()
            return None

    def save(self, tokens: AuthTokens) -> None:
        try:
            self.table.put_item(Item=self._tokens_to_item(tokens))
        except ClientError as e:
            logger.error(f"Error saving tokens to DynamoDB: {e}")
            raise

    def clear(self) -> None:
        try:
            self.table.delete_item(Key={'session_id': self.session_id})
        except ClientError as e:
            logger.error(f"Error clearing tokens from DynamoDB: {e}")
            raise

    def _tokens_to_item(self, tokens: AuthTokens) -> Dict:
        item = {
            'session_id': self.session_id,
            'access_token': tokens.access_token,
            'token_type': tokens.token_type,
            'scope': tokens.scope,
        }

        # Add optional fields if present
        if tokens.expiry_date is not None:
            item['expiry_date'] = Decimal(str(tokens.expiry_date))
        if tokens.refresh_token:
            item['refresh_token'] = tokens.refresh_token

        return item

    @staticmethod
    def _item_to_tokens(item: Dict) -> AuthTokens:
        expiry = item.get('expiry_date')
        return AuthTokens(
            access_token=item['access_token'],
            token_type=item.get('token_type') or 'Bearer',
            scope=item.get('scope') or '',
            expiry_date=float(expiry) if expiry is not None else None,
            refresh_token=item.get('refresh_token')
        )
