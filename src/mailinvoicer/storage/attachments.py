"""S3/R2 archive for accepted invoice attachments using boto3."""

import logging
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class S3Client:
    """S3-compatible storage client (supports Cloudflare R2)."""

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None,
    ):
        """Initialize S3 client.

        Args:
            bucket_name: S3 bucket name
            endpoint_url: S3 endpoint URL (for R2: https://<account>.r2.cloudflarestorage.com)
            access_key_id: AWS access key ID
            secret_access_key: AWS secret access key
            client: Pre-built boto3 client (used as-is when given)
        """
        self.bucket_name = bucket_name
        self.s3_client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
        )
        logger.info(f"S3 client initialized for bucket: {bucket_name}")

    def generate_key(self, user_id: str, message_id: str, filename: str) -> str:
        """Generate S3 object key.

        Format: {user_id}/gmail/{message_id}/{filename}
        """
        # Sanitize filename (remove path separators)
        safe_filename = Path(filename).name or "attachment"
        return f"{user_id}/gmail/{message_id}/{safe_filename}"

    def object_exists(self, key: str) -> bool:
        """Check if object exists in S3."""
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] in ("404", "NoSuchKey", "NotFound"):
                return False
            logger.error(f"Error checking object existence: {e}")
            raise

    def upload_attachment(
        self,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ):
        """Upload attachment to S3.

        Args:
            key: S3 object key
            data: File data as bytes
            content_type: MIME type of the file
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            logger.debug(f"Uploaded attachment: {key} ({len(data)} bytes)")
        except ClientError as e:
            logger.error(f"Error uploading attachment {key}: {e}")
            raise

    def archive(self, user_id: str, message_id: str, filename: str, data: bytes, content_type: str) -> str:
        """Upload an attachment unless it is already archived and return its key."""
        key = self.generate_key(user_id, message_id, filename)
        if not self.object_exists(key):
            self.upload_attachment(key=key, data=data, content_type=content_type)
        return key
