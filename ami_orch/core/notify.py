"""
Release notification: one SNS message listing the image id in every region.

Message body:

    {
      "v1": {
        "ReleaseVersion": "...",
        "ImageVersion": "...",
        "Regions": {
          "<region>": [
            {
              "Name": "<image name>",
              "ImageId": "ami-..."
            }
          ],
          ...
        }
      }
    }
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence

from ami_orch.core.models import RegionResult
from ami_orch.errors import RetryableCallError, TerminalBuildError
from ami_orch.io.sns import SNSClient
from ami_orch.progress import NullProgress, ProgressReporter

logger = logging.getLogger("ami.core.notify")


def topic_region(topic_arn: str) -> str:
    """
    Region embedded in an SNS topic ARN (``arn:<partition>:sns:<region>:<account>:<name>``).

    Raises:
        ValueError: not an SNS topic ARN
    """
    fields = topic_arn.split(":")
    if len(fields) < 6 or fields[0] != "arn" or fields[2] != "sns" or not fields[3]:
        raise ValueError(f"Not an SNS topic ARN: {topic_arn}")
    return fields[3]


def build_subject(release_version: str) -> str:
    return f"New {release_version} AMIs"


def build_message(
    release_version: str,
    image_version: str,
    name: str,
    images: Sequence[RegionResult],
) -> str:
    regions = {r.region: [{"Name": name, "ImageId": r.image_id}] for r in images}
    payload = {
        "v1": {
            "ReleaseVersion": release_version,
            "ImageVersion": image_version,
            "Regions": regions,
        }
    }
    return json.dumps(payload, indent=2)


class Notifier:
    """Best-effort publisher: failures are reported and swallowed, never fatal to a build."""

    def __init__(
        self,
        sns_factory: Callable[[str], SNSClient],
        progress: ProgressReporter | None = None,
    ):
        self.sns_factory = sns_factory
        self.progress = progress or NullProgress()

    def publish(
        self,
        topic_arn: str,
        release_version: str,
        image_version: str,
        name: str,
        images: Sequence[RegionResult],
    ) -> bool:
        """Send the release notification; returns False (after logging) on any failure."""
        try:
            sns = self.sns_factory(topic_region(topic_arn))
            sns.publish(
                topic_arn,
                build_subject(release_version),
                build_message(release_version, image_version, name, images),
            )
        except (ValueError, RetryableCallError, TerminalBuildError, OSError) as e:
            logger.error(f"Failed to send SNS notification: {e}", extra={"topic_arn": topic_arn})
            self.progress.line(f"Failed to send SNS notification: {e}")
            return False
        return True
