"""
AWS S3 connector used by the S3 step definitions.

Wraps a boto3 client and exposes the bucket and file operations the steps
need, with fixed key construction (path + "/" + file name) and flattened
listing results. Every call is a single request; nothing is retried.
"""
import boto3
import mimetypes
import os
from pathlib import Path
from typing import Dict, Any, List, Optional, Union
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from utils.config_loader import S3Config
from utils.custom_exceptions import StorageError, StorageErrorKind
from utils.logger import s3_logger as logger, log_execution_time

NOT_FOUND_CODES = {'NoSuchBucket', 'NoSuchKey', 'NotFound', '404'}
ALREADY_EXISTS_CODES = {'BucketAlreadyExists', 'BucketAlreadyOwnedByYou'}

ListingEntry = Union[str, Dict[str, Any]]


def build_path(path: Optional[str]) -> str:
    """
    Normalize a remote directory path so it ends in exactly one '/'.

    None and '' map to ''. Already normalized paths are returned unchanged.
    """
    if not path:
        return ''
    return path if path.endswith('/') else path + '/'


def _error_kind(error: Exception) -> StorageErrorKind:
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', '')
        if code in NOT_FOUND_CODES:
            return StorageErrorKind.NOT_FOUND
        if code in ALREADY_EXISTS_CODES:
            return StorageErrorKind.ALREADY_EXISTS
    return StorageErrorKind.TRANSPORT


class S3Connector:
    """S3 operations for BDD steps."""

    def __init__(self, s3_config: Optional[S3Config] = None, s3_client=None):
        """
        Initialize S3 connector.

        Args:
            s3_config: Endpoint settings, built once at start-up. Defaults to S3Config().
            s3_client: Ready boto3 S3 client; when given no client is created from s3_config.
        """
        self.config = s3_config or S3Config()
        self.s3_client = s3_client or self._create_client()

    def _create_client(self):
        client_config = Config(
            retries={'max_attempts': 1, 'mode': 'standard'},
            s3={'addressing_style': 'path'}
        )
        client = boto3.client(
            's3',
            endpoint_url=self.config.endpoint_url,
            region_name=self.config.region,
            aws_access_key_id=self.config.access_key_id,
            aws_secret_access_key=self.config.secret_access_key,
            config=client_config
        )
        logger.info(f"AWS S3 client created for endpoint {self.config.endpoint_url}")
        return client

    @log_execution_time("s3", "bucket_exists")
    def bucket_exists(self, bucket_name: str) -> bool:
        """
        Check whether a bucket is visible to the caller.

        Bucket names are compared against the lower-cased input, so "MyBucket"
        matches an existing bucket named "mybucket".
        """
        try:
            response = self.s3_client.list_buckets()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list S3 buckets: {e}")
            raise StorageError(f"Error listing buckets: {e}", _error_kind(e), bucket=bucket_name) from e

        expected = bucket_name.lower()
        return any(bucket['Name'] == expected for bucket in response.get('Buckets', []))

    @log_execution_time("s3", "create_bucket")
    def create_bucket(self, bucket_name: str) -> Dict[str, Any]:
        """
        Create a bucket. Intended for test set-up only.

        Raises:
            StorageError: ALREADY_EXISTS if the bucket exists, or the failure of the existence check
        """
        if self.bucket_exists(bucket_name):
            raise StorageError(f"A bucket named {bucket_name} already exists on S3",
                               StorageErrorKind.ALREADY_EXISTS, bucket=bucket_name)

        params: Dict[str, Any] = {'Bucket': bucket_name}
        if self.config.region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': self.config.region}

        try:
            response = self.s3_client.create_bucket(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to create S3 bucket {bucket_name}: {e}")
            raise StorageError(f"Error creating bucket {bucket_name}: {e}", _error_kind(e),
                               bucket=bucket_name) from e

        logger.info(f"Created S3 bucket: {bucket_name}")
        return response

    def _list_objects(self, bucket_name: str) -> List[Dict[str, Any]]:
        """All objects of a bucket, up to the configured max_keys."""
        list_kwargs: Dict[str, Any] = {'Bucket': bucket_name}
        if self.config.max_keys:
            list_kwargs['PaginationConfig'] = {'MaxItems': self.config.max_keys}

        objects = []
        try:
            page_iterator = self.s3_client.get_paginator('list_objects_v2').paginate(**list_kwargs)
            for page in page_iterator:
                objects.extend(page.get('Contents', []))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list S3 objects in {bucket_name}: {e}")
            raise StorageError(f"Error listing files of bucket {bucket_name}: {e}", _error_kind(e),
                               bucket=bucket_name) from e

        if page_iterator.resume_token:
            logger.warning(f"Listing of s3://{bucket_name} stopped at {self.config.max_keys} objects; "
                           f"raise max_keys in the S3 config to see the rest")
        return objects

    @log_execution_time("s3", "list_bucket_files")
    def list_bucket_files(self, bucket_name: str, path: Optional[str] = None,
                          as_records: bool = False) -> List[ListingEntry]:
        """
        List the files on a bucket path.

        Args:
            bucket_name: S3 bucket name
            path: Remote directory. None lists every object in the bucket by its
                  last path segment; otherwise only direct children of path are returned.
            as_records: Return {'name', 'size', 'last_modified'} dicts instead of names

        Returns:
            File names or file records, in listing order. Names are not de-duplicated.
        """
        objects = self._list_objects(bucket_name)

        def entry(name: str, obj: Dict[str, Any]) -> ListingEntry:
            if as_records:
                return {'name': name, 'size': obj['Size'], 'last_modified': obj['LastModified']}
            return name

        if path is None:
            files = [entry(obj['Key'].split('/')[-1], obj) for obj in objects]
        else:
            prefix = build_path(path)
            files = []
            for obj in objects:
                key = obj['Key']
                if not key.startswith(prefix):
                    continue
                remainder = key[len(prefix):]
                if '/' not in remainder:
                    files.append(entry(remainder, obj))

        logger.info(f"Listed {len(files)} files from s3://{bucket_name}/{build_path(path)}")
        return files

    @log_execution_time("s3", "upload_file")
    def upload_file(self, file_name: str, bucket_name: str, path: Optional[str],
                    source_path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
        """
        Upload a local file to bucket_name under path.

        Only the base name of file_name becomes part of the remote key.

        Args:
            file_name: Local file name or path
            bucket_name: Destination bucket
            path: Remote directory; None is treated as the bucket root
            source_path: Resolved local path to read from (defaults to file_name)

        Returns:
            The put_object response
        """
        key = build_path(path or '') + os.path.basename(file_name)
        local_path = Path(source_path or file_name)

        if not local_path.is_file():
            raise StorageError(f"Current Directory: {os.getcwd()}\nLocal file not found: {local_path}",
                               StorageErrorKind.NOT_FOUND, bucket=bucket_name, key=key)

        put_kwargs: Dict[str, Any] = {'Bucket': bucket_name, 'Key': key}
        content_type, _ = mimetypes.guess_type(str(local_path))
        if content_type:
            put_kwargs['ContentType'] = content_type

        try:
            with open(local_path, 'rb') as body:
                response = self.s3_client.put_object(Body=body, **put_kwargs)
        except (ClientError, BotoCoreError, OSError) as e:
            logger.error(f"Failed to upload {local_path} to s3://{bucket_name}/{key}: {e}")
            raise StorageError(f"Current Directory: {os.getcwd()}\nError uploading {local_path}: {e}",
                               _error_kind(e), bucket=bucket_name, key=key) from e

        logger.info(f"Uploaded file to S3: {local_path} -> s3://{bucket_name}/{key}")
        return response

    @log_execution_time("s3", "download_file")
    def download_file(self, file_name: str, bucket_name: str, path: Optional[str],
                      target_path: Optional[Union[str, Path]] = None) -> str:
        """
        Download a text file and write it locally.

        The whole object is read into memory and decoded as UTF-8; binary
        objects fail with a DECODE error.

        Args:
            file_name: Remote file name, also the default local target
            bucket_name: Bucket containing the file
            path: Remote directory containing the file
            target_path: Resolved local path to write to

        Returns:
            The downloaded text
        """
        key = build_path(path) + file_name

        try:
            response = self.s3_client.get_object(Bucket=bucket_name, Key=key)
            data = response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to download s3://{bucket_name}/{key}: {e}")
            raise StorageError(f"Error downloading {key} from {bucket_name}: {e}", _error_kind(e),
                               bucket=bucket_name, key=key) from e

        try:
            content = data.decode('utf-8')
        except UnicodeDecodeError as e:
            raise StorageError(f"Content of s3://{bucket_name}/{key} is not UTF-8 text: {e}",
                               StorageErrorKind.DECODE, bucket=bucket_name, key=key) from e

        local_path = Path(target_path or file_name)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_text(content, encoding='utf-8')

        logger.info(f"Downloaded S3 file: s3://{bucket_name}/{key} -> {local_path} ({len(data):,} bytes)")
        return content

    @log_execution_time("s3", "delete_file")
    def delete_file(self, file_name: str, bucket_name: str, path: Optional[str]) -> None:
        key = build_path(path) + file_name
        try:
            self.s3_client.delete_object(Bucket=bucket_name, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete s3://{bucket_name}/{key}: {e}")
            raise StorageError(f"Error deleting {key} from {bucket_name}: {e}", _error_kind(e),
                               bucket=bucket_name, key=key) from e

        logger.info(f"Deleted S3 object: s3://{bucket_name}/{key}")
