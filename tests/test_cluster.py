r"""
Tests for quorum_bench.cluster package.
"""

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, WaiterError

from quorum_bench.cluster import AwsCluster, BaremetalCluster, ClusterRegistry, Machine, MachineRequest, ResourceMonitor
from quorum_bench.cluster.monitor import DSTAT_FILE
from quorum_bench.errors import ProvisionError
from quorum_bench.types import CloudSettings


def client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "RunInstances")


class FakeWaiter:
    def __init__(self, error=None):
        self.error = error

    def wait(self, **kwargs):
        if self.error:
            raise self.error


class FakeEc2:
    """Minimal EC2 client double."""

    def __init__(self, run_errors=(), waiter_error=None, terminate_error=None, describe_errors=()):
        self.run_errors = list(run_errors)
        self.waiter_error = waiter_error
        self.describe_errors = list(describe_errors)
        self.terminate_error = terminate_error
        self.run_calls = []
        self.terminated = []
        self._next = 0

    def run_instances(self, **params):
        self.run_calls.append(params)
        if self.run_errors:
            raise self.run_errors.pop(0)
        instances = []
        for _ in range(params["MinCount"]):
            self._next += 1
            instances.append({"InstanceId": f"i-{self._next:04d}"})
        self.launched = [instance["InstanceId"] for instance in instances]
        return {"Instances": instances}

    def get_waiter(self, name):
        assert name == "instance_running"
        return FakeWaiter(self.waiter_error)

    def describe_instances(self, InstanceIds):
        if self.describe_errors:
            raise self.describe_errors.pop(0)
        return {
            "Reservations": [
                {
                    "Instances": [
                        {"InstanceId": instance_id, "PublicIpAddress": f"52.0.0.{instance_id[-1]}"}
                        for instance_id in InstanceIds
                    ]
                }
            ]
        }

    def terminate_instances(self, InstanceIds):
        self.terminated.extend(InstanceIds)
        if self.terminate_error:
            raise self.terminate_error


class TestClusterManager:
    def test_provision_registers_machines(self, fake_cluster_cls):
        cluster = fake_cluster_cls()
        machines = cluster.provision(MachineRequest(count=3))
        assert len(machines) == 3
        assert cluster.machines == machines

    def test_rejects_empty_request(self, fake_cluster_cls):
        with pytest.raises(ProvisionError, match="cannot provision 0"):
            fake_cluster_cls().provision(MachineRequest(count=0))

    def test_retries_transient_failures_with_backoff(self, fake_cluster_cls):
        delays = []
        cluster = fake_cluster_cls(transient_failures=2, max_attempts=3, backoff=5.0, sleep=delays.append)
        machines = cluster.provision(MachineRequest(count=1))
        assert len(machines) == 1
        assert cluster.attempts == 3
        assert delays == [5.0, 10.0]

    def test_gives_up_after_max_attempts(self, fake_cluster_cls):
        delays = []
        cluster = fake_cluster_cls(transient_failures=5, max_attempts=3, backoff=1.0, sleep=delays.append)
        with pytest.raises(ProvisionError, match="giving up after 3 attempts"):
            cluster.provision(MachineRequest(count=1))
        assert delays == [1.0, 2.0]
        assert cluster.machines == []

    def test_teardown_exactly_once(self, fake_cluster_cls):
        cluster = fake_cluster_cls()
        machines = cluster.provision(MachineRequest(count=2))
        cluster.teardown(machines[0])
        cluster.teardown(machines[0])
        cluster.teardown_all()
        cluster.teardown_all()
        assert sorted(cluster.released) == sorted(m.resource_id for m in machines)
        assert cluster.machines == []

    def test_teardown_failure_is_recorded_as_leak(self, fake_cluster_cls):
        cluster = fake_cluster_cls(broken={"fake-1-2"})
        machines = cluster.provision(MachineRequest(count=2))
        cluster.teardown_all()
        assert len(cluster.released) == 2
        assert len(cluster.leaks) == 1
        assert "fake-1-2" in str(cluster.leaks[0])
        assert all(m.connection.closed for m in machines)

    def test_session_releases_on_error(self, fake_cluster_cls):
        cluster = fake_cluster_cls()
        with pytest.raises(RuntimeError):
            with cluster.session(MachineRequest(count=2)):
                raise RuntimeError("later phase failed")
        assert len(cluster.released) == 2


class TestMachine:
    def test_run_captures_output(self, fake_connection_cls):
        connection = fake_connection_cls(stdout="Linux\n")
        machine = Machine("10.0.0.1", connection=connection)
        result = machine.run("uname")
        assert result.ok
        assert result.stdout == "Linux"
        assert machine.resource_id == "10.0.0.1"

    def test_kill_matching(self, fake_connection_cls):
        connection = fake_connection_cls()
        Machine("10.0.0.1", connection=connection).kill_matching("newt atomic")
        assert connection.commands == ["pkill -f '[n]ewt atomic' || true"]

    def test_kill_matching_keeps_leading_symbol(self, fake_connection_cls):
        connection = fake_connection_cls()
        Machine("10.0.0.1", connection=connection).kill_matching("./client")
        assert connection.commands == ["pkill -f ./client || true"]

    def test_has_matching(self, fake_connection_cls):
        assert Machine("10.0.0.1", connection=fake_connection_cls()).has_matching("dstat")
        connection = fake_connection_cls(exited=1)
        assert not Machine("10.0.0.1", connection=connection).has_matching("dstat")
        assert connection.commands == ["pgrep -f '[d]stat'"]

    def test_fetch(self, tmp_path, fake_connection_cls):
        connection = fake_connection_cls()
        Machine("10.0.0.1", connection=connection).fetch("bench/out.csv", tmp_path / "out.csv")
        assert connection.gets == [("bench/out.csv", str(tmp_path / "out.csv"))]


class TestClusterRegistry:
    def test_registered_testbeds(self):
        assert "aws" in ClusterRegistry.list()
        assert "baremetal" in ClusterRegistry.list()

    def test_create(self):
        cluster = ClusterRegistry.create("baremetal", hosts=["h1"])
        assert isinstance(cluster, BaremetalCluster)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown testbed"):
            ClusterRegistry.create("gcp")


class TestAwsCluster:
    def make(self, ec2, **kwargs):
        settings = CloudSettings(ami="ami-1234", key_name="bench")
        kwargs.setdefault("sleep", lambda seconds: None)
        return AwsCluster(settings, client=ec2, ssh_probe_attempts=0, **kwargs)

    def test_provision(self):
        ec2 = FakeEc2()
        cluster = self.make(ec2)
        machines = cluster.provision(MachineRequest(count=2, region="eu-west-1", instance_type="c5.xlarge"))
        assert [m.resource_id for m in machines] == ["i-0001", "i-0002"]
        assert machines[0].address == "52.0.0.1"
        params = ec2.run_calls[0]
        assert params["InstanceType"] == "c5.xlarge"
        assert params["ImageId"] == "ami-1234"
        assert params["KeyName"] == "bench"

    def test_capacity_error_is_retried(self):
        ec2 = FakeEc2(run_errors=[client_error("InsufficientInstanceCapacity")])
        cluster = self.make(ec2)
        machines = cluster.provision(MachineRequest(count=1))
        assert len(machines) == 1
        assert len(ec2.run_calls) == 2

    def test_auth_error_is_permanent(self):
        ec2 = FakeEc2(run_errors=[client_error("AuthFailure"), client_error("AuthFailure")])
        cluster = self.make(ec2)
        with pytest.raises(ProvisionError, match="AuthFailure"):
            cluster.provision(MachineRequest(count=1))
        assert len(ec2.run_calls) == 1

    def test_missing_ami(self):
        cluster = AwsCluster(CloudSettings(), client=FakeEc2())
        with pytest.raises(ProvisionError, match="machine image"):
            cluster.provision(MachineRequest(count=1))

    def test_slow_boot_terminates_launched_instances(self):
        ec2 = FakeEc2(waiter_error=WaiterError("InstanceRunning", "Max attempts exceeded", {}))
        cluster = self.make(ec2, max_attempts=2)
        with pytest.raises(ProvisionError, match="giving up after 2 attempts"):
            cluster.provision(MachineRequest(count=1))
        assert ec2.terminated == ["i-0001", "i-0002"]

    def test_unreachable_endpoint_terminates_launched_instances(self):
        unreachable = EndpointConnectionError(endpoint_url="https://ec2.eu-west-1.amazonaws.com")
        ec2 = FakeEc2(describe_errors=[unreachable])
        cluster = self.make(ec2, max_attempts=2)
        machines = cluster.provision(MachineRequest(count=1))
        assert ec2.terminated == ["i-0001"]
        assert [m.resource_id for m in machines] == ["i-0002"]

    def test_unexpected_error_still_terminates_launched_instances(self):
        ec2 = FakeEc2(describe_errors=[KeyError("Reservations")])
        cluster = self.make(ec2)
        with pytest.raises(KeyError):
            cluster.provision(MachineRequest(count=2))
        assert ec2.terminated == ["i-0001", "i-0002"]
        assert cluster.machines == []

    def test_release_terminates_instance(self):
        ec2 = FakeEc2()
        cluster = self.make(ec2)
        machines = cluster.provision(MachineRequest(count=2))
        cluster.teardown_all()
        assert sorted(ec2.terminated) == [m.resource_id for m in machines]
        assert cluster.leaks == []

    def test_already_gone_is_not_a_leak(self):
        ec2 = FakeEc2(terminate_error=client_error("InvalidInstanceID.NotFound"))
        cluster = self.make(ec2)
        cluster.provision(MachineRequest(count=1))
        cluster.teardown_all()
        assert cluster.leaks == []

    def test_terminate_failure_is_a_leak(self):
        ec2 = FakeEc2(terminate_error=client_error("UnauthorizedOperation"))
        cluster = self.make(ec2)
        cluster.provision(MachineRequest(count=1))
        cluster.teardown_all()
        assert len(cluster.leaks) == 1
        assert "i-0001" in str(cluster.leaks[0])


class TestBaremetalCluster:
    def test_too_few_hosts(self):
        cluster = BaremetalCluster(hosts=["h1"])
        with pytest.raises(ProvisionError, match="only 1 hosts"):
            cluster.provision(MachineRequest(count=2))

    def test_teardown_kills_participants(self, fake_connection_cls):
        cluster = BaremetalCluster(hosts=["h1", "h2"], cleanup_patterns=["newt_atomic", "client"])
        machines = cluster.provision(MachineRequest(count=2))
        connections = [fake_connection_cls() for _ in machines]
        for machine, connection in zip(machines, connections):
            machine._connection = connection
        cluster.teardown_all()
        assert connections[0].commands == ["pkill -f '[n]ewt_atomic' || true", "pkill -f '[c]lient' || true"]
        assert cluster.leaks == []

    def test_failed_cleanup_is_a_leak(self, fake_connection_cls):
        cluster = BaremetalCluster(hosts=["h1"], cleanup_patterns=["newt_atomic"])
        (machine,) = cluster.provision(MachineRequest(count=1))
        machine._connection = fake_connection_cls(exited=255)
        cluster.teardown(machine)
        assert len(cluster.leaks) == 1


class TestResourceMonitor:
    def machines(self, connection_cls, count=2, exited=1):
        return [
            Machine(f"10.0.0.{i}", resource_id=f"m{i}", connection=connection_cls(exited=exited))
            for i in range(1, count + 1)
        ]

    def test_start_runs_dstat_everywhere(self, fake_connection_cls):
        machines = self.machines(fake_connection_cls)
        monitor = ResourceMonitor(machines, workdir="bench")
        monitor.start()

        assert monitor.running == ["m1", "m2"]
        commands = machines[0].connection.commands
        assert commands[0] == f"mkdir -p bench && rm -f bench/{DSTAT_FILE}"
        assert commands[1].startswith("dstat -t -T -cdnm --io --output bench/")
        assert commands[1].endswith(" 1 > /dev/null")

    def test_stop_pulls_samples(self, tmp_path, fake_connection_cls):
        machines = self.machines(fake_connection_cls)
        monitor = ResourceMonitor(machines, workdir="bench")
        monitor.start()

        pulled = monitor.stop(tmp_path / "logs")

        assert pulled == [tmp_path / "logs" / "dstat_m1.csv", tmp_path / "logs" / "dstat_m2.csv"]
        connection = machines[1].connection
        assert connection.gets == [(f"bench/{DSTAT_FILE}", str(tmp_path / "logs" / "dstat_m2.csv"))]
        assert connection.commands[-1] == f"rm -f bench/{DSTAT_FILE}"
        assert monitor.running == []
        assert monitor.warnings == []

    def test_stop_warns_when_dstat_survives(self, tmp_path, fake_connection_cls):
        machines = self.machines(fake_connection_cls, count=1, exited=0)
        monitor = ResourceMonitor(machines, workdir="bench")
        monitor.start()
        monitor.stop(tmp_path)
        assert monitor.warnings == ["dstat still running on 10.0.0.1"]

    def test_unreachable_machine_is_a_warning(self, tmp_path, fake_connection_cls):
        class Broken:
            def run(self, command, **kwargs):
                raise OSError("No route to host")

            def close(self):
                pass

        machines = [Machine("10.0.0.9", resource_id="m9", connection=Broken()), *self.machines(fake_connection_cls, 1)]
        monitor = ResourceMonitor(machines)
        monitor.start()

        assert monitor.running == ["m1"]
        assert monitor.stop(tmp_path) == [tmp_path / "dstat_m1.csv"]
        assert len(monitor.warnings) == 1
        assert "10.0.0.9" in monitor.warnings[0]
