"""
Unit tests for the S3 connector.

Uses moto to mock S3 so the tests run without a LocalStack container.
"""
import os
import sys
from datetime import datetime

import boto3
import pytest
from moto import mock_aws

sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from aws.s3_connector import S3Connector, build_path
from utils.config_loader import S3Config
from utils.custom_exceptions import StorageError, StorageErrorKind


@pytest.fixture
def aws_credentials(monkeypatch):
    """Fake credentials so boto3 never looks for real ones."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def s3_client(aws_credentials):
    # No endpoint_url so moto can intercept the requests
    with mock_aws():
        yield boto3.client('s3', region_name='us-east-1')


@pytest.fixture
def connector(s3_client):
    return S3Connector(S3Config(), s3_client=s3_client)


@pytest.fixture
def populated_bucket(s3_client):
    s3_client.create_bucket(Bucket='files')
    for key in ('a/x.txt', 'a/b/y.txt', 'z.txt'):
        s3_client.put_object(Bucket='files', Key=key, Body=b'content of ' + key.encode())
    return 'files'


class TestBuildPath:
    """Test cases for remote path normalization."""

    @pytest.mark.parametrize('path, expected', [
        (None, ''),
        ('', ''),
        ('data', 'data/'),
        ('data/', 'data/'),
        ('a/b', 'a/b/'),
        ('/', '/'),
    ])
    def test_build_path(self, path, expected):
        assert build_path(path) == expected

    @pytest.mark.parametrize('path', [None, '', 'data', 'data/', 'a/b/c', 'x//'])
    def test_build_path_is_idempotent(self, path):
        assert build_path(build_path(path)) == build_path(path)


class TestS3ConnectorClient:
    """Test cases for client construction from S3Config."""

    def test_client_uses_bare_host_without_port_map(self, aws_credentials):
        connector = S3Connector(S3Config(host='localhost'))
        assert connector.s3_client.meta.endpoint_url == 'http://localhost'

    def test_client_uses_mapped_port(self, aws_credentials):
        connector = S3Connector(S3Config(use_port_map=True, port=4572))
        assert connector.s3_client.meta.endpoint_url == 'http://localhost:4572'

    def test_injected_client_is_used(self, s3_client):
        connector = S3Connector(s3_client=s3_client)
        assert connector.s3_client is s3_client


class TestBuckets:
    """Test cases for bucket existence and creation."""

    def test_bucket_exists(self, connector, s3_client):
        s3_client.create_bucket(Bucket='reports')
        assert connector.bucket_exists('reports') is True
        assert connector.bucket_exists('missing') is False

    def test_bucket_exists_lowercases_the_requested_name(self, connector, s3_client):
        s3_client.create_bucket(Bucket='reports')
        assert connector.bucket_exists('Reports') is True

    def test_create_bucket_then_exists(self, connector):
        response = connector.create_bucket('new-bucket')
        assert response['ResponseMetadata']['HTTPStatusCode'] == 200
        assert connector.bucket_exists('new-bucket') is True

    def test_create_existing_bucket_fails(self, connector):
        connector.create_bucket('twice')
        with pytest.raises(StorageError) as exc_info:
            connector.create_bucket('twice')
        assert exc_info.value.kind == StorageErrorKind.ALREADY_EXISTS
        assert 'already exists' in exc_info.value.message

    def test_create_bucket_outside_us_east_1(self, aws_credentials):
        with mock_aws():
            client = boto3.client('s3', region_name='eu-west-1')
            connector = S3Connector(S3Config(region='eu-west-1'), s3_client=client)
            connector.create_bucket('regional')
            location = client.get_bucket_location(Bucket='regional')
            assert location['LocationConstraint'] == 'eu-west-1'

    def test_create_bucket_propagates_existence_check_failure(self, connector, s3_client, monkeypatch):
        def fail(*args, **kwargs):
            raise StorageError("Error listing buckets: boom", StorageErrorKind.TRANSPORT)

        monkeypatch.setattr(connector, 'bucket_exists', fail)
        with pytest.raises(StorageError) as exc_info:
            connector.create_bucket('never-created')
        assert exc_info.value.kind == StorageErrorKind.TRANSPORT
        assert 'never-created' not in [b['Name'] for b in s3_client.list_buckets()['Buckets']]


class TestListBucketFiles:
    """Test cases for listing files."""

    def test_list_direct_children_only(self, connector, populated_bucket):
        assert connector.list_bucket_files(populated_bucket, 'a') == ['x.txt']

    def test_list_path_with_trailing_slash(self, connector, populated_bucket):
        assert connector.list_bucket_files(populated_bucket, 'a/') == ['x.txt']

    def test_list_nested_path(self, connector, populated_bucket):
        assert connector.list_bucket_files(populated_bucket, 'a/b') == ['y.txt']

    def test_list_bucket_root(self, connector, populated_bucket):
        assert connector.list_bucket_files(populated_bucket, '') == ['z.txt']

    def test_list_without_path_returns_all_trailing_names(self, connector, populated_bucket):
        assert sorted(connector.list_bucket_files(populated_bucket, None)) == ['x.txt', 'y.txt', 'z.txt']

    def test_list_without_path_keeps_duplicate_names(self, connector, s3_client):
        s3_client.create_bucket(Bucket='dupes')
        s3_client.put_object(Bucket='dupes', Key='one/report.csv', Body=b'1')
        s3_client.put_object(Bucket='dupes', Key='two/report.csv', Body=b'2')
        assert connector.list_bucket_files('dupes') == ['report.csv', 'report.csv']

    def test_list_as_records(self, connector, populated_bucket):
        records = connector.list_bucket_files(populated_bucket, 'a', as_records=True)
        assert len(records) == 1
        record = records[0]
        assert record['name'] == 'x.txt'
        assert record['size'] == len(b'content of a/x.txt')
        assert isinstance(record['last_modified'], datetime)

    def test_list_all_as_records(self, connector, populated_bucket):
        records = connector.list_bucket_files(populated_bucket, None, as_records=True)
        assert sorted(record['name'] for record in records) == ['x.txt', 'y.txt', 'z.txt']

    def test_list_is_capped_at_max_keys(self, s3_client):
        connector = S3Connector(S3Config(max_keys=2), s3_client=s3_client)
        s3_client.create_bucket(Bucket='big')
        for i in range(3):
            s3_client.put_object(Bucket='big', Key=f'file{i}.txt', Body=b'x')
        assert len(connector.list_bucket_files('big')) == 2

    def test_list_without_cap_returns_everything(self, s3_client):
        connector = S3Connector(S3Config(max_keys=0), s3_client=s3_client)
        s3_client.create_bucket(Bucket='big')
        for i in range(3):
            s3_client.put_object(Bucket='big', Key=f'file{i}.txt', Body=b'x')
        assert len(connector.list_bucket_files('big')) == 3

    def test_list_missing_bucket(self, connector):
        with pytest.raises(StorageError) as exc_info:
            connector.list_bucket_files('no-such-bucket', 'a')
        assert exc_info.value.kind == StorageErrorKind.NOT_FOUND
        assert exc_info.value.bucket == 'no-such-bucket'


class TestFileTransfers:
    """Test cases for upload, download and delete."""

    def test_upload_uses_base_name_only(self, connector, s3_client, tmp_path):
        s3_client.create_bucket(Bucket='transfers')
        local_file = tmp_path / 'report.csv'
        local_file.write_text('a,b\n1,2\n')

        response = connector.upload_file(str(local_file), 'transfers', 'data')

        assert response['ResponseMetadata']['HTTPStatusCode'] == 200
        body = s3_client.get_object(Bucket='transfers', Key='data/report.csv')['Body'].read()
        assert body == b'a,b\n1,2\n'

    def test_upload_with_null_path_goes_to_root(self, connector, s3_client, tmp_path):
        s3_client.create_bucket(Bucket='transfers')
        local_file = tmp_path / 'root.txt'
        local_file.write_text('root')

        connector.upload_file(str(local_file), 'transfers', None)

        keys = [obj['Key'] for obj in s3_client.list_objects_v2(Bucket='transfers')['Contents']]
        assert keys == ['root.txt']

    def test_upload_reads_from_source_path(self, connector, s3_client, tmp_path):
        s3_client.create_bucket(Bucket='transfers')
        resolved = tmp_path / 'nested' / 'notes.txt'
        resolved.parent.mkdir()
        resolved.write_text('notes')

        connector.upload_file('notes.txt', 'transfers', 'docs/', source_path=resolved)

        assert s3_client.get_object(Bucket='transfers', Key='docs/notes.txt')['Body'].read() == b'notes'

    def test_upload_missing_local_file(self, connector, s3_client, tmp_path):
        s3_client.create_bucket(Bucket='transfers')
        with pytest.raises(StorageError) as exc_info:
            connector.upload_file(str(tmp_path / 'absent.txt'), 'transfers', 'data')
        assert exc_info.value.kind == StorageErrorKind.NOT_FOUND
        assert f"Current Directory: {os.getcwd()}" in exc_info.value.message

    def test_upload_to_missing_bucket_reports_working_directory(self, connector, tmp_path):
        local_file = tmp_path / 'orphan.txt'
        local_file.write_text('orphan')
        with pytest.raises(StorageError) as exc_info:
            connector.upload_file(str(local_file), 'no-such-bucket', 'data')
        assert exc_info.value.kind == StorageErrorKind.NOT_FOUND
        assert 'Current Directory:' in exc_info.value.message

    def test_download_writes_text(self, connector, s3_client, tmp_path):
        s3_client.create_bucket(Bucket='transfers')
        s3_client.put_object(Bucket='transfers', Key='in/test.txt', Body=b'this is a test file')
        target = tmp_path / 'out' / 'test.txt'

        content = connector.download_file('test.txt', 'transfers', 'in', target_path=target)

        assert content == 'this is a test file'
        assert target.read_text(encoding='utf-8') == 'this is a test file'

    def test_download_missing_key(self, connector, s3_client, tmp_path):
        s3_client.create_bucket(Bucket='transfers')
        with pytest.raises(StorageError) as exc_info:
            connector.download_file('missing.txt', 'transfers', 'in', target_path=tmp_path / 'missing.txt')
        assert exc_info.value.kind == StorageErrorKind.NOT_FOUND
        assert exc_info.value.key == 'in/missing.txt'

    def test_download_binary_content_fails_to_decode(self, connector, s3_client, tmp_path):
        s3_client.create_bucket(Bucket='transfers')
        s3_client.put_object(Bucket='transfers', Key='image.bin', Body=b'\xff\xd8\xff\xe0')
        target = tmp_path / 'image.bin'
        with pytest.raises(StorageError) as exc_info:
            connector.download_file('image.bin', 'transfers', None, target_path=target)
        assert exc_info.value.kind == StorageErrorKind.DECODE
        assert not target.exists()

    def test_delete_then_list(self, connector, s3_client, tmp_path):
        s3_client.create_bucket(Bucket='transfers')
        for name in ('keep.txt', 'drop.txt'):
            local_file = tmp_path / name
            local_file.write_text(name)
            connector.upload_file(str(local_file), 'transfers', 'data')

        connector.delete_file('drop.txt', 'transfers', 'data')

        assert connector.list_bucket_files('transfers', 'data') == ['keep.txt']

    def test_delete_missing_key_is_not_an_error(self, connector, s3_client):
        s3_client.create_bucket(Bucket='transfers')
        connector.delete_file('never-there.txt', 'transfers', 'data')
