import json

import pytest

from castle.orchestration import cluster as cluster_mod
from castle.orchestration import roles
from castle.orchestration import uplink as uplink_mod
from castle.utils import castle_log
from castle.utils import helpers

DESCRIPTOR = {
    "nodes": {
        "broker1": {
            "roles": {
                "docker": {"image": "kafka:7", "container_name": "c1", "docker_args": ["-p", "9092"]},
                "kafka": {"broker_id": 1, "listeners": ["PLAINTEXT"]},
            }
        },
        "zk1": {"roles": {}},
    }
}


@pytest.fixture
def descriptor_env(tmp_path) -> cluster_mod.Environment:
    env = cluster_mod.Environment(tmp_path)
    helpers.write_json(out_file=env.cluster_output_path, content=DESCRIPTOR)
    return env


class TestEnvironment:
    def test_paths(self, tmp_path):
        env = cluster_mod.Environment(tmp_path)
        assert env.cluster_output_path == tmp_path / "cluster.conf"
        assert env.log_path("n1") == tmp_path / "n1.clog"

    def test_relative_path_is_absolute(self):
        assert cluster_mod.Environment("some/dir").working_directory.is_absolute()


class TestRoles:
    def test_unknown_role_is_preserved(self):
        roles_set = roles.RoleSet.from_dict({"kafka": {"broker_id": 1}})
        role = roles_set.get("kafka")
        assert isinstance(role, roles.GenericRole)
        assert roles_set.to_dict() == {"kafka": {"broker_id": 1}}
        assert roles_set.get_typed(roles.DockerNodeRole) is None

    def test_duplicate_role(self):
        roles_set = roles.RoleSet([roles.DockerNodeRole(image="busybox")])
        with pytest.raises(ValueError, match="already attached"):
            roles_set.add(roles.DockerNodeRole(image="alpine"))


class TestCluster:
    def test_load_descriptor(self, descriptor_env):
        with cluster_mod.Cluster.from_descriptor(
            descriptor_env, cluster_log=castle_log.CastleLog.from_devnull("cluster")
        ) as cluster:
            assert list(cluster.nodes) == ["broker1", "zk1"]

            broker = cluster.node("broker1")
            docker_role = broker.get_role(roles.DockerNodeRole)
            assert docker_role == roles.DockerNodeRole(
                image="kafka:7", container_name="c1", docker_args=["-p", "9092"]
            )
            assert isinstance(broker.uplink, uplink_mod.DockerUplink)
            assert isinstance(broker.get_role("kafka"), roles.GenericRole)
            assert broker.get_role("docker") is docker_role

            zk = cluster.node("zk1")
            assert zk.get_role(roles.DockerNodeRole) is None
            assert isinstance(zk.uplink, uplink_mod.NullUplink)
            assert zk.uplink.started()

            zk.log.info("hello")
        assert "hello" in descriptor_env.log_path("zk1").read_text()

    def test_write_round_trip(self, descriptor_env):
        with cluster_mod.Cluster.from_descriptor(
            descriptor_env,
            uplink_factory=lambda name, roles_set: uplink_mod.NullUplink(),
            cluster_log=castle_log.CastleLog.from_devnull("cluster"),
        ) as cluster:
            cluster.node("broker1").get_role(roles.DockerNodeRole).container_name = ""
            out_path = cluster.write_to_disk()

        content = json.loads(out_path.read_text())
        assert content["nodes"]["broker1"]["roles"]["docker"]["container_name"] == ""
        # Roles this process doesn't know survive the rewrite
        assert content["nodes"]["broker1"]["roles"]["kafka"] == {
            "broker_id": 1,
            "listeners": ["PLAINTEXT"],
        }
        assert content["nodes"]["zk1"] == {"roles": {}}
        leftovers = {p.name for p in descriptor_env.working_directory.glob(".cluster.conf.*")}
        assert leftovers <= {".cluster.conf.lock"}

    def test_nodes_snapshot(self, make_cluster):
        cluster = make_cluster(["n1", "n2"])
        nodes = cluster.nodes
        cluster.remove_node("n2")

        assert list(nodes) == ["n1", "n2"]
        assert list(cluster.nodes) == ["n1"]
        with pytest.raises(TypeError):
            nodes["n3"] = nodes["n1"]  # type: ignore[index]

    def test_unknown_node(self, make_cluster):
        with pytest.raises(KeyError, match="n9"):
            make_cluster(["n1"]).node("n9")

    def test_close_releases_uplinks_and_logs(self, make_cluster):
        cluster = make_cluster(["n1", "n2"])
        cluster.close()

        for node in cluster.nodes.values():
            assert node.uplink.closed
            assert node.log.closed
        assert cluster.cluster_log.closed

    def test_duplicate_node(self, make_cluster):
        cluster = make_cluster(["n1"])
        with pytest.raises(ValueError, match="already exists"):
            cluster.add_node(
                cluster_mod.Node(
                    "n1",
                    uplink=uplink_mod.NullUplink(),
                    log=castle_log.CastleLog.from_devnull("n1"),
                )
            )

    def test_missing_descriptor(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            cluster_mod.Cluster.from_descriptor(cluster_mod.Environment(tmp_path / "nope"))
