import logging
from abc import ABC, abstractmethod

from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, PartialCredentialsError

from submission_functions.exceptions import StorageAuthError, StorageError, StoragePayloadTooLargeError

logger = logging.getLogger(__name__)

AUTH_ERROR_CODES = {
    'AccessDenied',
    'AllAccessDisabled',
    'ExpiredToken',
    'InvalidAccessKeyId',
    'InvalidToken',
    'SignatureDoesNotMatch',
    'TokenRefreshRequired',
}
TOO_LARGE_ERROR_CODES = {'EntityTooLarge', 'MaxMessageLengthExceeded'}


def default_public_base(region: str, bucket: str) -> str:
    return f"https://s3.{region}.amazonaws.com/{bucket}"


class ArtifactStore(ABC):
    """Interface for artifact storage"""

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> str:
        """Write one object and return its public URL"""

    @abstractmethod
    def get(self, key: str) -> bytes:
        pass

    @abstractmethod
    def url_for(self, key: str) -> str:
        pass


class S3ArtifactStore(ArtifactStore):
    """S3 implementation; one put_object per artifact, no retry"""

    def __init__(self, bucket_name: str, s3_client, public_base: str):
        self.bucket_name = bucket_name
        self.s3_client = s3_client
        self.public_base = public_base.rstrip('/')

    def url_for(self, key: str) -> str:
        return f"{self.public_base}/{key}"

    def put(self, key: str, data: bytes, content_type: str) -> str:
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type
            )
        except ClientError as e:
            raise translate_client_error(e, key) from e
        except (NoCredentialsError, PartialCredentialsError) as e:
            raise StorageAuthError(f"No usable AWS credentials for s3://{self.bucket_name}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 put failed for {key}: {e}") from e

        logger.info("Stored s3://%s/%s (%d bytes, %s)", self.bucket_name, key, len(data), content_type)
        return self.url_for(key)

    def get(self, key: str) -> bytes:
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            raise translate_client_error(e, key) from e
        return response['Body'].read()


def translate_client_error(error: ClientError, key: str) -> StorageError:
    code = error.response.get('Error', {}).get('Code', 'Unknown')
    message = f"S3 {code} for {key}: {error}"
    if code in AUTH_ERROR_CODES:
        return StorageAuthError(message)
    if code in TOO_LARGE_ERROR_CODES:
        return StoragePayloadTooLargeError(message)
    return StorageError(message)
