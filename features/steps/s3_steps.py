"""
S3 step definitions for Behave BDD testing.

Every quoted argument may reference scenario variables as ${name}; they are
substituted before the S3 call. Results are stored under 'lastRun'.
"""
from behave import given, when, then, register_type
import json
import parse
import sys
from pathlib import Path

# Get project root (go up 3 levels: steps -> features -> project_root)
current_file = Path(__file__)
project_root = current_file.parent.parent.parent
sys.path.insert(0, str(project_root.absolute()))

from aws.s3_connector import S3Connector
from utils.config_loader import config_loader
from utils.file_helper import get_file_path, write_text_file, TEST_FILE_CONTENT
from utils.logger import logger, test_logger
from utils.scenario_state import fill_template, get_scenario_state


@parse.with_pattern(r'[^"]*')
def parse_text(text):
    """Quoted step argument; may be empty."""
    return text


register_type(Text=parse_text)


def get_s3_connector(context) -> S3Connector:
    """Connector built in before_all, or built now from config.ini."""
    connector = getattr(context, 's3_connector', None)
    if connector is None:
        connector = S3Connector(config_loader.get_s3_config())
        context.s3_connector = connector
    return connector


def resolve(context, *values):
    """Substitute ${name} references in each argument from the scenario state."""
    state = get_scenario_state(context)
    resolved = tuple(fill_template(value, state) for value in values)
    return resolved if len(resolved) > 1 else resolved[0]


def attach_last_run(context):
    """Attach {"lastRun": ...} as JSON to the report when the formatter supports it."""
    payload = json.dumps({'lastRun': get_scenario_state(context).last_run}, indent=2, default=str)
    test_logger.info(f"Attachment: {payload}")
    attach = getattr(context, 'attach', None)
    if callable(attach):
        attach('application/json', payload.encode('utf-8'))


def list_files(context, bucket_name, path, as_records):
    files = get_s3_connector(context).list_bucket_files(bucket_name, path, as_records)
    get_scenario_state(context).last_run = files
    return files


# Bucket steps
@given('bucket "{bucket_name:Text}" exists on S3')
def step_bucket_exists_on_s3(context, bucket_name):
    """Fail unless the bucket exists."""
    bucket_name = resolve(context, bucket_name)
    logger.info(f"Checking S3 bucket exists: {bucket_name}")
    exists = get_s3_connector(context).bucket_exists(bucket_name)
    assert exists, f"Bucket {bucket_name} does not exist on S3"


@given('bucket "{bucket_name:Text}" is not on S3')
def step_bucket_not_on_s3(context, bucket_name):
    """Fail if the bucket exists."""
    bucket_name = resolve(context, bucket_name)
    logger.info(f"Checking S3 bucket is absent: {bucket_name}")
    exists = get_s3_connector(context).bucket_exists(bucket_name)
    assert not exists, f"Bucket {bucket_name} does exist on S3"


@then('bucket "{bucket_name:Text}" exists')
def step_verify_bucket_exists(context, bucket_name):
    bucket_name = resolve(context, bucket_name)
    exists = get_s3_connector(context).bucket_exists(bucket_name)
    assert exists, f"The bucket {bucket_name} does not exist on S3"


@given('bucket "{bucket_name:Text}" is created on S3')
def step_create_bucket(context, bucket_name):
    """Create a bucket. For testing the step library only; not for production scenarios."""
    bucket_name = resolve(context, bucket_name)
    logger.info(f"Creating S3 bucket: {bucket_name}")
    get_s3_connector(context).create_bucket(bucket_name)


# Listing steps
@when('file list of bucket "{bucket_name:Text}" on path "{path:Text}" is retrieved')
def step_list_files_on_path(context, bucket_name, path):
    bucket_name, path = resolve(context, bucket_name, path)
    list_files(context, bucket_name, path, as_records=False)


@when('file list of bucket "{bucket_name:Text}" on path "{path:Text}" is retrieved as json item')
def step_list_file_records_on_path(context, bucket_name, path):
    bucket_name, path = resolve(context, bucket_name, path)
    list_files(context, bucket_name, path, as_records=True)


@when('all files of bucket "{bucket_name:Text}" is retrieved')
def step_list_all_files(context, bucket_name):
    bucket_name = resolve(context, bucket_name)
    list_files(context, bucket_name, None, as_records=False)


@when('all files of bucket "{bucket_name:Text}" is retrieved as json item')
def step_list_all_file_records(context, bucket_name):
    bucket_name = resolve(context, bucket_name)
    list_files(context, bucket_name, None, as_records=True)


@then('file exists with name "{file_name:Text}" at path "{path:Text}" in bucket "{bucket_name:Text}"')
def step_verify_file_exists(context, file_name, path, bucket_name):
    """Check a fresh listing of the path; the scenario state is left untouched."""
    file_name, path, bucket_name = resolve(context, file_name, path, bucket_name)
    files = get_s3_connector(context).list_bucket_files(bucket_name, path, False)
    assert file_name in files, f"The file does not exist in {bucket_name} at path {path}"


# File steps
@when('file "{file_name:Text}" is uploaded to bucket "{bucket_name:Text}" at path "{path:Text}"')
def step_upload_file(context, file_name, bucket_name, path):
    file_name, bucket_name, path = resolve(context, file_name, bucket_name, path)
    state = get_scenario_state(context)
    state.last_run = get_s3_connector(context).upload_file(
        file_name, bucket_name, path, source_path=get_file_path(file_name, state)
    )


@when('file "{file_name:Text}" is deleted from bucket "{bucket_name:Text}" at path "{path:Text}"')
def step_delete_file(context, file_name, bucket_name, path):
    """Delete the file, then store the remaining listing of the path."""
    file_name, bucket_name, path = resolve(context, file_name, bucket_name, path)
    get_s3_connector(context).delete_file(file_name, bucket_name, path)
    list_files(context, bucket_name, path, as_records=False)


@when('file "{file_name:Text}" from bucket "{bucket_name:Text}" at path "{path:Text}" is retrieved')
def step_download_file(context, file_name, bucket_name, path):
    file_name, bucket_name, path = resolve(context, file_name, bucket_name, path)
    state = get_scenario_state(context)
    file_path = get_file_path(file_name, state)
    get_s3_connector(context).download_file(file_name, bucket_name, path, target_path=file_path)
    state.last_run = file_path.read_text(encoding='utf-8')
    attach_last_run(context)


@when('test file "{file_name:Text}" is created')
def step_create_test_file(context, file_name):
    """Write a small local file for upload tests. Not for production scenarios."""
    file_name = resolve(context, file_name)
    file_path = write_text_file(get_file_path(file_name, get_scenario_state(context)), TEST_FILE_CONTENT)
    logger.info(f"Created test file: {file_path}")
