#!/usr/bin/env python3
"""
Runner for the S3 step definitions: launches behave and checks the endpoint.
"""
import click
import os
import subprocess
import sys
from pathlib import Path
from botocore.exceptions import BotoCoreError, ClientError

# Add parent directory to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from aws.s3_connector import S3Connector
from utils.config_loader import ConfigLoader
from utils.custom_exceptions import AutomationFrameworkError
from utils.logger import logger, set_log_level


@click.group()
@click.option('--config-dir', default='config', help='Directory holding config.ini')
@click.option('--log-level', default='INFO', help='Log level')
@click.option('--use-port-map/--no-port-map', default=None,
              help='Append the mapped service port to the endpoint (sets USEPORTMAP)')
@click.pass_context
def cli(ctx, config_dir, log_level, use_port_map):
    """S3 step definitions CLI."""
    ctx.ensure_object(dict)
    ctx.obj['CONFIG_DIR'] = config_dir
    set_log_level(log_level)
    if use_port_map is not None:
        os.environ['USEPORTMAP'] = '1' if use_port_map else '0'
    logger.info(f"Starting S3 steps CLI - Config: {config_dir}, Log Level: {log_level.upper()}")


@cli.command()
@click.option('--tags', '-t', multiple=True, help='Behave tag expression, repeatable')
@click.option('--junit/--no-junit', default=False, help='Write JUnit XML to output/junit')
@click.argument('feature_paths', nargs=-1)
def run(tags, junit, feature_paths):
    """Run behave on the given feature paths (default: features/)."""
    behave_cmd = [sys.executable, "-m", "behave", "--no-capture"]

    if junit:
        os.makedirs("output/junit", exist_ok=True)
        behave_cmd.extend(["--junit", "--junit-directory=output/junit"])

    for tag in tags:
        behave_cmd.extend(["--tags", tag])

    behave_cmd.extend(feature_paths or ["features/"])

    click.echo(f"Command: {' '.join(behave_cmd)}")
    result = subprocess.run(behave_cmd)
    sys.exit(result.returncode)


@cli.command('check-connection')
@click.option('--bucket', help='Also check that this bucket exists')
@click.pass_context
def check_connection(ctx, bucket):
    """List the buckets visible at the configured endpoint."""
    try:
        s3_config = ConfigLoader(ctx.obj['CONFIG_DIR']).get_s3_config()
        connector = S3Connector(s3_config)
        buckets = connector.s3_client.list_buckets().get('Buckets', [])
        click.echo(f"Connected to {s3_config.endpoint_url}: {len(buckets)} bucket(s)")
        for entry in buckets:
            click.echo(f"  {entry['Name']}")

        if bucket:
            exists = connector.bucket_exists(bucket)
            click.echo(f"Bucket {bucket}: {'found' if exists else 'not found'}")
            if not exists:
                sys.exit(1)
    except (AutomationFrameworkError, ClientError, BotoCoreError) as e:
        logger.error(f"Connection check failed: {e}")
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == '__main__':
    cli()
