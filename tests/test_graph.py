import pytest

from bigbang.graph import Depend, Graph, Node, TTLCache, TypeRegistry, unique_key


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def registry():
    reg = TypeRegistry()
    reg.register(
        "envoy.config.cluster.v3.Cluster",
        "clusters",
        url="/resource/cluster",
        pretty_name="Cluster",
        upstream_paths={"eds_cluster_config.service_name": "endpoint"},
        downstream=lambda name, project, version: [
            ("listeners", {"general.ref": name, "general.project": project})
        ],
    )
    reg.register("envoy.config.listener.v3.Listener", "listeners", pretty_name="Listener")
    return reg


def node(node_id="n1", name="one", gtype="envoy.config.listener.v3.Listener"):
    return Node(id=node_id, name=name, gtype=gtype, collection="listeners")


def test_registry_lookups(registry):
    gtype = "envoy.config.cluster.v3.Cluster"
    assert registry.collection(gtype) == "clusters"
    assert registry.url(gtype) == "/resource/cluster"
    assert registry.upstream_paths(gtype) == {"eds_cluster_config.service_name": "endpoint"}
    assert registry.downstream_filters(gtype, "c1", "p1", "1.33") == [
        ("listeners", {"general.ref": "c1", "general.project": "p1"})
    ]


def test_registry_unknown_type(registry):
    assert registry.collection("unknown") == ""
    assert registry.pretty_name("unknown") == "unknown"
    assert registry.upstream_paths("unknown") == {}
    assert registry.downstream_filters("unknown", "a", "b", "c") == []


def test_unique_key_joins_fields():
    dep = Depend(name="n", gtype="g", collection="c", project="p")
    assert unique_key(dep) == "n_g_c_p"


def test_add_node_records_data():
    graph = Graph()
    assert graph.add_node(node()) is True
    assert graph.to_dict()["nodes"] == [
        {
            "data": {
                "id": "n1",
                "label": "one",
                "category": "listeners",
                "gtype": "envoy.config.listener.v3.Listener",
                "link": "",
                "first": False,
                "direction": "",
            }
        }
    ]


def test_add_node_rejects_duplicates_and_empty():
    graph = Graph()
    graph.add_node(node())
    assert graph.add_node(node(name="other")) is False
    assert graph.add_node(Node(id="", name="x")) is False
    assert graph.add_node(Node(id="x", name="")) is False
    assert len(graph.nodes) == 1


def test_upstream_edge_direction_and_label(registry):
    graph = Graph()
    source = node()
    target = Depend(id="c1", name="cl", gtype="envoy.config.cluster.v3.Cluster")
    assert graph.add_edge(source, target, True, registry) is True
    assert graph.to_dict()["edges"] == [
        {"data": {"source": "n1", "target": "c1", "label": "Listener to Cluster"}}
    ]


def test_downstream_edge_is_reversed(registry):
    graph = Graph()
    source = Node(id="c1", name="cl", gtype="envoy.config.cluster.v3.Cluster")
    target = Depend(id="n1", name="one", gtype="envoy.config.listener.v3.Listener")
    graph.add_edge(source, target, False, registry)
    data = graph.edges[0]["data"]
    assert (data["source"], data["target"]) == ("n1", "c1")
    assert data["label"] == "Listener to Cluster"


def test_self_and_duplicate_edges_skipped(registry):
    graph = Graph()
    source = node()
    assert graph.add_edge(source, Depend(id="n1", gtype="x"), True, registry) is False
    graph.add_edge(source, Depend(id="c1", gtype="x"), True, registry)
    assert graph.add_edge(source, Depend(id="c1", gtype="y"), True, registry) is False
    assert len(graph.edges) == 1


def test_cache_returns_value_until_expiry():
    clock = FakeClock()
    cache = TTLCache(ttl=10, clock=clock)
    cache.set("k", ("id", "{}"))
    clock.now = 10
    assert cache.get("k") == ("id", "{}")
    clock.now = 10.5
    assert cache.get("k") is None
    assert len(cache) == 0


def test_cache_missing_key():
    assert TTLCache().get("absent") is None


def test_cache_set_refreshes_lifetime():
    clock = FakeClock()
    cache = TTLCache(ttl=5, clock=clock)
    cache.set("k", 1)
    clock.now = 4
    cache.set("k", 2)
    clock.now = 8
    assert cache.get("k") == 2


def test_cache_cleanup_removes_only_expired():
    clock = FakeClock()
    cache = TTLCache(ttl=5, clock=clock)
    cache.set("old", 1)
    clock.now = 3
    cache.set("new", 2)
    clock.now = 6
    assert cache.cleanup() == 1
    assert cache.get("new") == 2
    assert cache.get("old") is None