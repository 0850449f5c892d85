from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Any, BinaryIO, Dict, Iterator, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from objectstore.core.settings import StorageSettings
from objectstore.providers.store import UNKNOWN_SIZE, ObjectHandle, ObjectStoreClient
from objectstore.storage.lifecycle import parse_lifecycle_policy

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


def _presign_param(query_name: str) -> str:
    # "response-content-disposition" -> "ResponseContentDisposition"
    return "".join(part[:1].upper() + part[1:] for part in query_name.split("-") if part)


class S3ObjectStore(ObjectStoreClient):
    """
    Native AWS S3 ObjectStoreClient.

    Uses boto3 credential resolution (env, profile, IRSA in EKS).
    No access keys required/expected in AWS runtime.

    Optional:
      - endpoint_url: S3-compatible endpoint (MinIO, R2, ...)
      - force_path_style: path-style addressing (required for MinIO)
    """

    def __init__(
        self,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        force_path_style: bool = False,
    ):
        region = (region or "").strip() or None
        endpoint_url = (endpoint_url or "").strip() or None

        cfg = Config(
            signature_version="s3v4",
            retries={"max_attempts": 8, "mode": "standard"},
            region_name=region,
            s3={"addressing_style": "path" if force_path_style else "auto"},
        )

        client_kwargs: Dict[str, Any] = {"config": cfg}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url

        self.region = region
        self.endpoint_url = endpoint_url
        self.s3 = boto3.client("s3", **client_kwargs)

    @classmethod
    def from_settings(cls, settings: StorageSettings) -> "S3ObjectStore":
        return cls(
            region=settings.region or None,
            endpoint_url=settings.s3_endpoint_url or None,
            force_path_style=settings.s3_force_path_style,
        )

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self.s3.head_bucket(Bucket=bucket)
            return True
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_BUCKET_CODES:
                return False
            raise

    def put_object(
        self,
        bucket: str,
        key: str,
        data: BinaryIO,
        size: int = UNKNOWN_SIZE,
        content_type: str = "application/octet-stream",
    ) -> None:
        content_type = content_type or "application/octet-stream"
        if size < 0:
            # Streams of unknown length go through the managed multipart uploader
            self.s3.upload_fileobj(data, bucket, key, ExtraArgs={"ContentType": content_type})
            return
        self.s3.put_object(
            Bucket=bucket,
            Key=key,
            Body=data,
            ContentLength=size,
            ContentType=content_type,
        )

    def get_object(self, bucket: str, key: str) -> bytes:
        resp = self.s3.get_object(Bucket=bucket, Key=key)
        return resp["Body"].read()

    def fget_object(self, bucket: str, key: str, local_path: str) -> None:
        # get first: a missing object must not leave directories behind
        body = self.s3.get_object(Bucket=bucket, Key=key)["Body"]
        try:
            os.makedirs(os.path.dirname(os.path.abspath(local_path)), exist_ok=True)
            with open(local_path, "wb") as f:
                for chunk in body.iter_chunks(chunk_size=DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
        finally:
            body.close()

    def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires: timedelta,
        query_params: Optional[Dict[str, str]] = None,
    ) -> str:
        params: Dict[str, Any] = {"Bucket": bucket, "Key": key}
        for name, value in (query_params or {}).items():
            params[_presign_param(name)] = value

        return self.s3.generate_presigned_url(
            ClientMethod="get_object",
            Params=params,
            ExpiresIn=max(1, int(expires.total_seconds())),
        )

    def list_objects(self, bucket: str, prefix: str, recursive: bool = True) -> Iterator[ObjectHandle]:
        kwargs: Dict[str, Any] = {"Bucket": bucket, "Prefix": prefix}
        if not recursive:
            kwargs["Delimiter"] = "/"

        paginator = self.s3.get_paginator("list_objects_v2")
        for page in paginator.paginate(**kwargs):
            for item in page.get("Contents") or []:
                yield ObjectHandle(
                    key=item["Key"],
                    size=item.get("Size"),
                    last_modified=item.get("LastModified"),
                )

    def remove_object(self, bucket: str, key: str) -> None:
        self.s3.delete_object(Bucket=bucket, Key=key)

    def set_lifecycle_policy(self, bucket: str, policy_xml: str) -> None:
        rules = parse_lifecycle_policy(policy_xml)
        logger.debug("[ObjectStore] s3 lifecycle bucket=%s rules=%s", bucket, len(rules))
        self.s3.put_bucket_lifecycle_configuration(
            Bucket=bucket,
            LifecycleConfiguration={"Rules": rules},
        )
