from __future__ import annotations

import logging
import os
import shutil

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..application.interfaces import ObjectStore
from ..config import NormalizeConfig
from ..domain.errors import CleanupWarning, DownloadError, NotFoundOrEmptyError, UploadError

logger = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


def create_s3_client(config: NormalizeConfig):
    addressing_style = "path" if config.storage_endpoint_url else "auto"
    return boto3.client(
        "s3",
        endpoint_url=config.storage_endpoint_url,
        region_name=config.storage_region,
        aws_access_key_id=config.storage_access_key,
        aws_secret_access_key=config.storage_secret_key,
        config=BotoConfig(
            signature_version="s3v4", s3={"addressing_style": addressing_style}
        ),
    )


class S3ObjectStore(ObjectStore):
    def __init__(self, client) -> None:
        self._client = client

    def get(self, bucket: str, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise NotFoundOrEmptyError(f"Object not found: {bucket}/{key}") from exc
            raise DownloadError(f"Could not fetch {bucket}/{key}: {exc}") from exc
        except BotoCoreError as exc:
            raise DownloadError(f"Could not fetch {bucket}/{key}: {exc}") from exc

        body = response.get("Body")
        if body is None:
            raise NotFoundOrEmptyError(f"Empty response body for {bucket}/{key}")
        try:
            data = body.read()
        finally:
            body.close()
        if not data:
            raise NotFoundOrEmptyError(f"Empty response body for {bucket}/{key}")
        return data

    def put(
        self,
        bucket: str,
        key: str,
        body: bytes,
        content_type: str,
        cache_control: str | None = None,
    ) -> None:
        params = {
            "Bucket": bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        try:
            self._client.put_object(**params)
        except (BotoCoreError, ClientError) as exc:
            raise UploadError(f"Could not write {bucket}/{key}: {exc}") from exc

    def delete(self, local_path: str) -> None:
        try:
            _remove(local_path)
        except CleanupWarning as exc:
            logger.warning("Could not delete temp file %s: %s", local_path, exc)


def _remove(local_path: str) -> None:
    try:
        if os.path.isdir(local_path):
            shutil.rmtree(local_path)
        else:
            os.unlink(local_path)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise CleanupWarning(str(exc)) from exc


def create_object_store(config: NormalizeConfig, client=None) -> ObjectStore:
    return S3ObjectStore(client if client is not None else create_s3_client(config))
