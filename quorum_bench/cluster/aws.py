r"""
AWS EC2 cluster manager.

    from quorum_bench.cluster.aws import AwsCluster
    from quorum_bench.config import cloud_settings_from_env

    cluster = AwsCluster(settings=cloud_settings_from_env())
"""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError, WaiterError

from quorum_bench.cluster.base import ClusterManager, ClusterRegistry, Machine, MachineRequest
from quorum_bench.errors import ProvisionError, TransientProvisionError
from quorum_bench.types import CloudSettings

__all__ = ["AwsCluster", "TRANSIENT_ERROR_CODES"]

LOGGER = logging.getLogger("quorum_bench.cluster.aws")

TRANSIENT_ERROR_CODES = frozenset(
    {
        "InsufficientInstanceCapacity",
        "InsufficientCapacity",
        "RequestLimitExceeded",
        "Throttling",
        "InternalError",
        "ServiceUnavailable",
        "Unavailable",
    }
)

TAG_KEY = "quorum-bench"


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


@ClusterRegistry.register("aws")
class AwsCluster(ClusterManager):
    """Provisions EC2 instances and terminates them on teardown."""

    def __init__(
        self,
        settings: CloudSettings | None = None,
        *,
        client: Any = None,
        tag: str = "run",
        ssh_probe_attempts: int = 10,
        ssh_probe_interval: float = 5.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._settings = settings or CloudSettings()
        self._client = client
        self._tag = tag
        self._ssh_probe_attempts = ssh_probe_attempts
        self._ssh_probe_interval = ssh_probe_interval

    @property
    def name(self) -> str:
        return "aws"

    def _ec2(self, region: str) -> Any:
        if self._client is None:
            self._client = boto3.client("ec2", region_name=region or self._settings.region)
        return self._client

    def _provision(self, request: MachineRequest) -> list[Machine]:
        settings = self._settings
        if not settings.ami:
            raise ProvisionError("no machine image configured (set QUORUM_BENCH_AWS_AMI)")
        ec2 = self._ec2(request.region)

        params: dict[str, Any] = {
            "ImageId": settings.ami,
            "InstanceType": request.instance_type or settings.instance_type,
            "MinCount": request.count,
            "MaxCount": request.count,
            "TagSpecifications": [
                {"ResourceType": "instance", "Tags": [{"Key": TAG_KEY, "Value": self._tag}]},
            ],
        }
        if settings.key_name:
            params["KeyName"] = settings.key_name

        try:
            response = ec2.run_instances(**params)
        except ClientError as e:
            code = _error_code(e)
            if code in TRANSIENT_ERROR_CODES:
                raise TransientProvisionError(f"run_instances: {code}") from e
            raise ProvisionError(f"run_instances: {code or e}") from e
        except EndpointConnectionError as e:
            raise TransientProvisionError(str(e)) from e
        except BotoCoreError as e:
            raise ProvisionError(str(e)) from e

        instance_ids = [instance["InstanceId"] for instance in response.get("Instances", [])]
        LOGGER.info("launched %d instance(s): %s", len(instance_ids), ", ".join(instance_ids))

        try:
            return self._await_machines(ec2, instance_ids)
        except Exception:
            # never reached _live, so nothing else would terminate them
            self._terminate_ids(ec2, instance_ids)
            raise

    def _await_machines(self, ec2: Any, instance_ids: list[str]) -> list[Machine]:
        try:
            ec2.get_waiter("instance_running").wait(InstanceIds=instance_ids)
        except WaiterError as e:
            raise TransientProvisionError(f"instances did not reach running state: {e}") from e
        except BotoCoreError as e:
            raise TransientProvisionError(f"instance_running waiter: {e}") from e

        try:
            described = ec2.describe_instances(InstanceIds=instance_ids)
        except ClientError as e:
            raise TransientProvisionError(f"describe_instances: {_error_code(e)}") from e
        except BotoCoreError as e:
            raise TransientProvisionError(f"describe_instances: {e}") from e

        addresses: dict[str, str] = {}
        for reservation in described.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                address = instance.get("PublicIpAddress") or instance.get("PrivateIpAddress")
                if address:
                    addresses[instance["InstanceId"]] = address

        missing = [instance_id for instance_id in instance_ids if instance_id not in addresses]
        if missing:
            raise TransientProvisionError(f"no address yet for {', '.join(missing)}")

        machines = [
            Machine(
                addresses[instance_id],
                resource_id=instance_id,
                user=self._settings.ssh_user,
                key_file=self._settings.key_file,
            )
            for instance_id in instance_ids
        ]
        for machine in machines:
            self._probe_ssh(machine)
        return machines

    def _probe_ssh(self, machine: Machine) -> None:
        """Wait until sshd on a freshly booted machine accepts commands."""
        for attempt in range(1, self._ssh_probe_attempts + 1):
            try:
                if machine.run("true").ok:
                    return
            except Exception as e:
                LOGGER.debug("ssh probe %d/%d on %s failed: %s", attempt, self._ssh_probe_attempts, machine.address, e)
            self._sleep(self._ssh_probe_interval)
        if self._ssh_probe_attempts:
            raise TransientProvisionError(f"{machine.resource_id} not reachable over ssh")

    def _terminate_ids(self, ec2: Any, instance_ids: list[str]) -> None:
        if not instance_ids:
            return
        try:
            ec2.terminate_instances(InstanceIds=instance_ids)
        except (BotoCoreError, ClientError) as e:
            LOGGER.warning("possible resource leak: cannot terminate %s: %s", ", ".join(instance_ids), e)

    def _release(self, machine: Machine) -> None:
        ec2 = self._ec2(self._settings.region)
        try:
            ec2.terminate_instances(InstanceIds=[machine.resource_id])
        except ClientError as e:
            if _error_code(e) == "InvalidInstanceID.NotFound":
                return
            raise
