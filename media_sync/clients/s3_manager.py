"""
S3 client manager for the media bucket.

Exposes list/get/put/delete over the configured bucket and prefix and
translates botocore failures into the sync error taxonomy. Retries are
not done here; callers wrap operations in a RetryController.
"""
import mimetypes
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Iterator, BinaryIO, Optional
import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    PartialCredentialsError
)
from loguru import logger

from ..errors import BucketMissing, NotFound, Unauthorized, Unavailable, SyncError
from ..models.config import S3Config
from ..models.data_models import RemoteEntry

NOT_FOUND_CODES = {'404', 'NoSuchKey', 'NotFound'}

MISSING_BUCKET_CODES = {'NoSuchBucket'}

UNAUTHORIZED_CODES = {
    '401',
    '403',
    'AccessDenied',
    'AllAccessDisabled',
    'ExpiredToken',
    'InvalidAccessKeyId',
    'InvalidClientTokenId',
    'InvalidToken',
    'SignatureDoesNotMatch',
    'TokenRefreshRequired',
    'UnauthorizedOperation'
}


def translate_error(error: Exception, description: str) -> SyncError:
    """Map a boto3/botocore exception onto NotFound, Unauthorized or Unavailable."""
    if isinstance(error, ClientError):
        code = str(error.response.get('Error', {}).get('Code', ''))
        if code in MISSING_BUCKET_CODES:
            return BucketMissing(f"{description}: {code}")
        if code in NOT_FOUND_CODES:
            return NotFound(f"{description}: {code}")
        if code in UNAUTHORIZED_CODES:
            return Unauthorized(f"{description}: {code}")
        return Unavailable(f"{description}: {code or error}")
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return Unauthorized(f"{description}: {error}")
    return Unavailable(f"{description}: {error}")


def _etag_fingerprint(etag: Optional[str]) -> Optional[str]:
    """Return the ETag as an MD5 fingerprint, or None for multipart ETags."""
    if not etag:
        return None
    etag = etag.strip('"')
    if '-' in etag:
        return None
    return etag.lower()


class ObjectStream:
    """Streaming object body whose read failures raise the translated sync errors."""

    def __init__(self, body, description: str):
        self._body = body
        self._description = description

    def read(self, amt: Optional[int] = None) -> bytes:
        try:
            return self._body.read(amt)
        except BotoCoreError as e:
            raise translate_error(e, f"{self._description} (reading body)") from e

    def close(self) -> None:
        self._body.close()


class S3Manager:
    """Manages S3 operations for the media bucket."""

    def __init__(self, config: S3Config, timeout: float = 60.0):
        """
        Initialize S3Manager with the media bucket configuration.

        Args:
            config: Bucket addressing and credentials
            timeout: Connect and read timeout applied to every call, in seconds
        """
        self.config = config
        self.prefix = config.normalized_prefix
        self.timeout = timeout

        self.client = self._create_s3_client(config)

        logger.info(f"S3Manager initialized for bucket {config.bucket} (prefix: '{self.prefix}')")

    def _create_s3_client(self, config: S3Config):
        """Create an S3 client from configuration."""
        client_config = Config(
            connect_timeout=self.timeout,
            read_timeout=self.timeout,
            retries={'total_max_attempts': 1, 'mode': 'standard'}
        )
        kwargs = {
            'region_name': config.region,
            'config': client_config
        }
        if config.endpoint:
            kwargs['endpoint_url'] = config.endpoint
        if config.uses_static_credentials:
            kwargs['aws_access_key_id'] = config.access_key
            kwargs['aws_secret_access_key'] = config.secret_key
        else:
            logger.info("No static credentials configured - using the default credential chain")

        client = boto3.client('s3', **kwargs)
        logger.debug(f"Created S3 client for region {config.region}, endpoint: {config.endpoint or 'default'}")
        return client

    def full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def relative_key(self, full_key: str) -> str:
        return full_key[len(self.prefix):] if full_key.startswith(self.prefix) else full_key

    def list_objects(self, prefix: Optional[str] = None) -> Iterator[RemoteEntry]:
        """
        List all objects under the configured prefix.

        Args:
            prefix: Optional sub-prefix, relative to the configured prefix

        Yields:
            RemoteEntry: Objects with keys relative to the configured prefix
        """
        list_prefix = self.full_key(prefix or '')
        paginator = self.client.get_paginator('list_objects_v2')
        try:
            for page in paginator.paginate(Bucket=self.config.bucket, Prefix=list_prefix):
                for obj in page.get('Contents', []):
                    if obj['Key'].endswith('/'):
                        continue
                    yield RemoteEntry(
                        key=self.relative_key(obj['Key']),
                        size=obj['Size'],
                        last_modified=obj['LastModified'],
                        fingerprint=_etag_fingerprint(obj.get('ETag'))
                    )
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"list s3://{self.config.bucket}/{list_prefix}") from e

    def get_object_stream(self, key: str) -> ObjectStream:
        """
        Get an object as a binary stream.

        Args:
            key: Object key relative to the configured prefix

        Returns:
            ObjectStream: Streaming body of the object

        Raises:
            NotFound, Unauthorized, Unavailable
        """
        full_key = self.full_key(key)
        try:
            response = self.client.get_object(Bucket=self.config.bucket, Key=full_key)
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"get {full_key}") from e
        logger.debug(f"Retrieved object stream for key: {full_key}")
        return ObjectStream(response['Body'], f"get {full_key}")

    def put_object(self, key: str, stream: BinaryIO, size: int) -> RemoteEntry:
        """
        Upload a stream as a single object.

        A single PutObject either completes or leaves no object behind, so a
        partial upload never becomes visible.

        Args:
            key: Object key relative to the configured prefix
            stream: Readable binary stream positioned at the start
            size: Number of bytes to send

        Returns:
            RemoteEntry: The stored object as reported by the bucket
        """
        full_key = self.full_key(key)
        content_type = mimetypes.guess_type(key)[0] or 'application/octet-stream'
        try:
            response = self.client.put_object(
                Bucket=self.config.bucket,
                Key=full_key,
                Body=stream,
                ContentLength=size,
                ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            raise translate_error(e, f"put {full_key}") from e

        headers = response.get('ResponseMetadata', {}).get('HTTPHeaders', {})
        last_modified = datetime.now(timezone.utc)
        if headers.get('date'):
            try:
                last_modified = parsedate_to_datetime(headers['date'])
            except (TypeError, ValueError):
                logger.debug(f"Unparsable date header for {full_key}: {headers['date']}")

        logger.debug(f"Uploaded {size} bytes to key: {full_key}")
        return RemoteEntry(
            key=key,
            size=size,
            last_modified=last_modified,
            fingerprint=_etag_fingerprint(response.get('ETag'))
        )

    def delete_object(self, key: str) -> None:
        """
        Delete an object. Deleting an absent key succeeds.

        Args:
            key: Object key relative to the configured prefix
        """
        full_key = self.full_key(key)
        try:
            self.client.delete_object(Bucket=self.config.bucket, Key=full_key)
        except (BotoCoreError, ClientError) as e:
            error = translate_error(e, f"delete {full_key}")
            if isinstance(error, NotFound):
                logger.debug(f"Key already absent: {full_key}")
                return
            raise error from e
        logger.debug(f"Deleted key: {full_key}")

    def test_connection(self) -> bool:
        """
        Test connection to the media bucket.

        Returns:
            bool: True if connection successful, False otherwise
        """
        try:
            self.client.head_bucket(Bucket=self.config.bucket)
            logger.info("Media bucket connection test successful")
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Media bucket connection test failed: {translate_error(e, 'head bucket')}")
            return False
