"""
Amazon S3 source adapter.
"""

import logging
import posixpath
from contextlib import contextmanager
from typing import Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from truckload.exceptions import InvalidCredential, NotFound, TransientProviderError
from truckload.models import Credential, Cursor, Page, Video
from truckload.providers.base import ProviderAdapter, filename_variants, looks_like_video

logger = logging.getLogger(__name__)

_AUTH_ERRORS = {
    "401",
    "403",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
}
_MISSING_ERRORS = {"404", "NoSuchKey", "NoSuchBucket", "NotFound"}

# SigV4 presigned URLs cannot outlive seven days
MAX_PRESIGN_SECONDS = 7 * 24 * 3600


@contextmanager
def s3_errors(what: str) -> Iterator[None]:
    """Translate boto errors into the migration error taxonomy."""
    try:
        yield
    except ClientError as e:
        code = str(e.response.get("Error", {}).get("Code", ""))
        if code in _AUTH_ERRORS:
            raise InvalidCredential(f"S3 rejected the credential ({what})") from e
        if code in _MISSING_ERRORS:
            raise NotFound(f"{what}: {code}") from e
        raise TransientProviderError(f"{what}: {e}") from e
    except BotoCoreError as e:
        raise TransientProviderError(f"{what}: {e}") from e


class S3Adapter(ProviderAdapter):
    """
    S3 bucket adapter.

    Credential: public_key/secret_key are the access key pair. Metadata must
    carry "bucket" and "region"; an optional "prefix" narrows the listing.
    """

    platform_id = "s3"

    PAGE_SIZE = 1000

    def _client(self, credential: Credential):
        return boto3.client(
            "s3",
            aws_access_key_id=credential.public_key,
            aws_secret_access_key=credential.secret_key,
            region_name=credential.metadata.get("region"),
            config=Config(
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                retries={"max_attempts": 2},
            ),
        )

    def fetch_page(self, credential: Credential, cursor: Optional[Cursor]) -> Page:
        state = self.read_cursor(cursor)
        bucket = credential.require("bucket")
        client = self._client(credential)

        kwargs = {"Bucket": bucket, "MaxKeys": self.PAGE_SIZE}
        if credential.metadata.get("prefix"):
            kwargs["Prefix"] = credential.metadata["prefix"]
        if state.get("token"):
            kwargs["ContinuationToken"] = state["token"]

        with s3_errors(f"listing {bucket}"):
            response = client.list_objects_v2(**kwargs)

        videos = [
            Video(source_id=obj["Key"], title=posixpath.basename(obj["Key"]), location=bucket)
            for obj in response.get("Contents", [])
            if looks_like_video(obj.get("Key"))
        ]

        next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
        logger.info(f"[s3] {response.get('KeyCount', 0)} keys, {len(videos)} candidate videos")
        return Page(
            videos=videos,
            next_cursor=self.make_cursor(token=next_token) if next_token else None,
            exhausted=next_token is None,
        )

    def variants(self, video: Video) -> list[str]:
        return filename_variants(video.source_id)

    def resolve(self, credential: Credential, video: Video, variant: str) -> str:
        bucket = credential.require("bucket")
        client = self._client(credential)

        with s3_errors(f"checking s3://{bucket}/{variant}"):
            client.head_object(Bucket=bucket, Key=variant)
            return client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": variant},
                ExpiresIn=min(self.access_url_ttl, MAX_PRESIGN_SECONDS),
            )

    def validate_credential(self, credential: Credential) -> None:
        bucket = credential.require("bucket")
        client = self._client(credential)
        try:
            with s3_errors(f"checking bucket {bucket}"):
                client.head_bucket(Bucket=bucket)
        except (NotFound, TransientProviderError) as e:
            raise InvalidCredential(str(e)) from e
