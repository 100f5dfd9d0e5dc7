# features/environment.py
import time

from aws.s3_connector import S3Connector
from utils.config_loader import config_loader
from utils.logger import logger, test_logger
from utils.scenario_state import ScenarioState


def before_all(context):
    """Build the S3 configuration and connector once for the whole run."""
    logger.info("Starting test execution with S3 step definitions")
    context.test_start_time = time.time()

    context.s3_config = config_loader.get_s3_config()
    context.s3_connector = S3Connector(context.s3_config)

    context.test_config = {
        'start_time': context.test_start_time,
        'total_scenarios': 0,
        'passed_scenarios': 0,
        'failed_scenarios': 0
    }


def before_feature(context, feature):
    logger.info(f"Starting feature: {feature.name}")
    context.feature_start_time = time.time()
    context.feature_stats = {'total': 0, 'passed': 0, 'failed': 0}


def before_scenario(context, scenario):
    """Start every scenario with an empty variable store."""
    test_logger.info(f"Starting scenario: {scenario.name}")
    context.scenario_start_time = time.time()
    context.results = ScenarioState()
    context.last_step_error = None


def after_step(context, step):
    """Log step failures and keep the last error for the scenario summary."""
    if step.status.name == "failed":
        test_logger.error(f"Step failed: {step.name}")
        if getattr(step, 'exception', None):
            test_logger.error(f"Exception: {step.exception}")
            context.last_step_error = str(step.exception)


def after_scenario(context, scenario):
    scenario_duration = time.time() - context.scenario_start_time

    context.test_config['total_scenarios'] += 1
    context.feature_stats['total'] += 1

    if scenario.status.name == "passed":
        test_logger.info(f"✓ Scenario passed: {scenario.name} (Duration: {scenario_duration:.2f}s)")
        context.test_config['passed_scenarios'] += 1
        context.feature_stats['passed'] += 1
    else:
        test_logger.error(f"✗ Scenario failed: {scenario.name} (Duration: {scenario_duration:.2f}s)")
        context.test_config['failed_scenarios'] += 1
        context.feature_stats['failed'] += 1
        if context.last_step_error:
            test_logger.error(f"Last error: {context.last_step_error}")
        test_logger.debug(f"Scenario variables at failure: {context.results.as_dict()}")


def after_feature(context, feature):
    feature_duration = time.time() - context.feature_start_time
    logger.info(f"Feature completed: {feature.name} (Duration: {feature_duration:.2f}s)")
    logger.info(f"Feature stats - Total: {context.feature_stats['total']}, "
                f"Passed: {context.feature_stats['passed']}, Failed: {context.feature_stats['failed']}")


def after_all(context):
    total_duration = time.time() - context.test_start_time

    logger.info("=" * 60)
    logger.info("TEST EXECUTION SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Endpoint: {context.s3_config.endpoint_url}")
    logger.info(f"Total duration: {total_duration:.2f}s")
    logger.info(f"Total scenarios: {context.test_config['total_scenarios']}")
    logger.info(f"Passed scenarios: {context.test_config['passed_scenarios']}")
    logger.info(f"Failed scenarios: {context.test_config['failed_scenarios']}")

    if context.test_config['total_scenarios'] > 0:
        pass_rate = (context.test_config['passed_scenarios'] / context.test_config['total_scenarios']) * 100
        logger.info(f"Pass rate: {pass_rate:.1f}%")

    logger.info("=" * 60)
