import pytest

from rdsconnect.errors import CacheUnavailableError
from rdsconnect.models import (
    ClusterRecord,
    ClusterTopology,
    EndpointRecord,
    EndpointRole,
    InstanceRecord,
    Settings,
)
from rdsconnect.services.filesystem import FileSystemService
from rdsconnect.services.topology_cache import TopologyCache, parse, render


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


def _shared_topology():
    return ClusterTopology(
        cluster=ClusterRecord(cluster_id="shared", region="us-east-1"),
        endpoints=[
            EndpointRecord("shared", EndpointRole.WRITER, "shared.cluster-x.us-east-1.rds.amazonaws.com"),
            EndpointRecord("shared", EndpointRole.READER, "shared.cluster-ro-x.us-east-1.rds.amazonaws.com"),
        ],
        instances=[
            InstanceRecord("shared", "shared-2", "shared-2.x.us-east-1.rds.amazonaws.com", "db.r6g.large"),
            InstanceRecord("shared", "shared-1", "shared-1.x.us-east-1.rds.amazonaws.com", "db.r6g.large"),
        ],
    )


def _cache(tmp_path):
    settings = Settings(db_username="app", state_dir=str(tmp_path / "state"))
    logger = DummyLogger()
    return TopologyCache(settings, FileSystemService(logger), logger)


def test_render_uses_canonical_record_order():
    analytics = ClusterTopology(cluster=ClusterRecord(cluster_id="analytics", region="us-east-2"))

    content = render([_shared_topology(), analytics])

    assert content.splitlines() == [
        "CLUSTER|analytics|us-east-2",
        "CLUSTER|shared|us-east-1",
        "ENDPOINT|shared|Reader|shared.cluster-ro-x.us-east-1.rds.amazonaws.com",
        "ENDPOINT|shared|Writer|shared.cluster-x.us-east-1.rds.amazonaws.com",
        "INSTANCE|shared|shared-1|shared-1.x.us-east-1.rds.amazonaws.com|db.r6g.large",
        "INSTANCE|shared|shared-2|shared-2.x.us-east-1.rds.amazonaws.com|db.r6g.large",
    ]


def test_parse_reads_back_rendered_cache():
    topologies = parse(render([_shared_topology()]))

    assert len(topologies) == 1
    topology = topologies[0]
    assert topology.region == "us-east-1"
    assert topology.endpoint(EndpointRole.READER).address.startswith("shared.cluster-ro-")
    assert [instance.instance_id for instance in topology.instances] == ["shared-1", "shared-2"]


@pytest.mark.parametrize(
    "content",
    [
        "CLUSTER|shared\n",
        "ENDPOINT|ghost|Reader|ghost.example.com\n",
        "CLUSTER|shared|us-east-1\nENDPOINT|shared|Primary|x.example.com\n",
        "garbage\n",
    ],
)
def test_parse_rejects_malformed_records(content):
    with pytest.raises(ValueError):
        parse(content)


def test_cache_is_namespaced_per_identity(tmp_path):
    cache = _cache(tmp_path)

    cache.write("dev", [_shared_topology()])

    assert cache.exists("dev")
    assert not cache.exists("prod")
    assert cache.path_for("dev").endswith("rds-cache-dev")
    assert cache.load("dev")[0].cluster_id == "shared"


def test_cache_write_replaces_previous_content(tmp_path):
    cache = _cache(tmp_path)
    cache.write("dev", [_shared_topology()])

    analytics = ClusterTopology(cluster=ClusterRecord(cluster_id="analytics", region="us-east-2"))
    cache.write("dev", [analytics])

    assert [topology.cluster_id for topology in cache.load("dev")] == ["analytics"]


def test_cache_load_reports_corrupt_file(tmp_path):
    cache = _cache(tmp_path)
    path = tmp_path / "state" / "rds-cache-dev"
    path.parent.mkdir(parents=True)
    path.write_text("not a cache\n", encoding="utf-8")

    with pytest.raises(CacheUnavailableError, match="rdsconnect discover"):
        cache.load("dev")
