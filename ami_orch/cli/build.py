"""
AMI build CLI - Turn a raw disk image into AMI(s).

Usage:
  ami-orch build [--public] [--publicsnap] [--sriov] [--ena] [--arm64]
      [--poll-interval SECONDS] [--request-timeout SECONDS]
      DISK_IMAGE NAME DESCRIPTION REGION BUCKET CREDENTIALS_FILE
      [TOPIC_ARN RELEASE_VERSION IMAGE_VERSION]

Environment variables:
  AMI_CA_CERT (CA bundle for TLS validation, default: system trust store)
  AMI_FANOUT_WORKERS (regions awaited concurrently during fan-out, default: 1)
"""

import logging
import os

import click

from ami_orch.config import POLL_INTERVAL_SECONDS, REQUEST_TIMEOUT_SECONDS
from ami_orch.errors import BuildCancelledError

logger = logging.getLogger("ami.cli.build")


def _ca_cert(ca_cert):
    return ca_cert or os.environ.get('AMI_CA_CERT') or None


@click.command()
@click.option('--public', is_flag=True, help='Copy the AMI to every region and mark all copies public')
@click.option('--publicsnap', 'public_snapshot', is_flag=True, help='Mark the EBS snapshot public')
@click.option('--sriov', is_flag=True, help='Register with SriovNetSupport=simple')
@click.option('--ena', is_flag=True, help='Register with EnaSupport=true')
@click.option('--arm64', is_flag=True, help='Register an arm64 image (default: x86_64)')
@click.option('--fanout-workers', type=int, help='Regions awaited concurrently (default: from AMI_FANOUT_WORKERS env or 1)')
@click.option('--poll-interval', type=float, default=POLL_INTERVAL_SECONDS, show_default=True, help='Seconds between status polls')
@click.option('--request-timeout', type=float, default=REQUEST_TIMEOUT_SECONDS, show_default=True, help='Seconds per AWS request; part uploads get extra time for their size')
@click.option('--ca-cert', type=click.Path(dir_okay=False), help='CA bundle path (default: from AMI_CA_CERT env)')
@click.argument('disk_image', type=click.Path(dir_okay=False))
@click.argument('name')
@click.argument('description')
@click.argument('region')
@click.argument('bucket')
@click.argument('credentials_file', type=click.Path(dir_okay=False))
@click.argument('notification', nargs=-1, metavar='[TOPIC_ARN RELEASE_VERSION IMAGE_VERSION]')
@click.pass_context
def build(
    ctx,
    public,
    public_snapshot,
    sriov,
    ena,
    arm64,
    fanout_workers,
    poll_interval,
    request_timeout,
    ca_cert,
    disk_image,
    name,
    description,
    region,
    bucket,
    credentials_file,
    notification,
):
    """Upload DISK_IMAGE to BUCKET and register it as an AMI in REGION.

    With TOPIC_ARN, RELEASE_VERSION and IMAGE_VERSION, the resulting image
    ids are published to the SNS topic once the build succeeds.
    """
    from ami_orch.config import BuildConfig
    from ami_orch.core.pipeline import BuildPipeline
    from ami_orch.credentials import load_credentials
    from ami_orch.progress import NullProgress, ProgressReporter

    if len(notification) not in (0, 3):
        raise click.UsageError("TOPIC_ARN, RELEASE_VERSION and IMAGE_VERSION must be given together")
    topic_arn, release_version, image_version = notification or (None, None, None)

    if fanout_workers is None:
        fanout_workers = int(os.environ.get('AMI_FANOUT_WORKERS', '1'))

    try:
        cfg = BuildConfig(
            disk_image=disk_image,
            name=name,
            description=description,
            region=region,
            bucket=bucket,
            public=public,
            public_snapshot=public_snapshot,
            sriov=sriov,
            ena=ena,
            architecture="arm64" if arm64 else "x86_64",
            topic_arn=topic_arn,
            release_version=release_version,
            image_version=image_version,
            poll_interval_seconds=poll_interval,
            request_timeout_seconds=request_timeout,
            ca_cert_path=_ca_cert(ca_cert),
            fanout_workers=fanout_workers,
        )
    except ValueError as e:
        raise click.UsageError(str(e))

    credentials = load_credentials(credentials_file)

    json_logs = (ctx.obj or {}).get('json_logs', False)
    progress = NullProgress() if json_logs else ProgressReporter()

    logger.info("Starting AMI build", extra={"image_name": name, "region": region, "bucket": bucket, "public": public})

    pipeline = BuildPipeline(cfg, credentials, progress=progress, output=click.echo)
    pipeline.install_signal_handlers()

    try:
        result = pipeline.run()
    except KeyboardInterrupt:
        raise BuildCancelledError("Build interrupted") from None

    if result.notified is False:
        logger.warning("Build succeeded but the SNS notification was not sent")


@click.command()
@click.option('--ca-cert', type=click.Path(dir_okay=False), help='CA bundle path (default: from AMI_CA_CERT env)')
@click.argument('region')
@click.argument('credentials_file', type=click.Path(dir_okay=False))
def regions(ca_cert, region, credentials_file):
    """List the regions visible from REGION, one per line."""
    from ami_orch.credentials import load_credentials
    from ami_orch.io.ec2 import EC2Client

    credentials = load_credentials(credentials_file)
    ec2 = EC2Client(credentials, region, ca_cert_path=_ca_cert(ca_cert))
    for name in ec2.describe_regions():
        click.echo(name)
