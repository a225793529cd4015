import json

import jinja2
import pytest

from bigbang import templates
from bigbang.templates import render_template

LISTENER_IDS = {
    "UniqListenerNameID": "aaaaaa",
    "UniqFilterChainNameID": "bbbbbb",
    "UniqFilterNameID": "cccccc",
}


def render_json(template, data, version="1", project="demo"):
    return json.loads(render_template(template, data, version, project, LISTENER_IDS))


def test_non_eds_cluster_endpoints_round_trip():
    data = {
        "cluster_name": "backend",
        "type": "STRICT_DNS",
        "protocol": "TCP",
        "lb_endpoints": [
            {"address": "10.0.0.1", "port": 8080},
            {"address": "10.0.0.2", "port": 9090},
        ],
    }
    doc = render_json(templates.NON_EDS_CLUSTER, data, version="1.33", project="proj")
    assert doc["general"]["name"] == "backend"
    assert doc["general"]["version"] == "1.33"
    assert doc["general"]["project"] == "proj"
    resource = doc["resource"]["resource"]
    assert resource["type"] == "STRICT_DNS"
    lb = resource["load_assignment"]["endpoints"][0]["lb_endpoints"]
    sockets = [e["endpoint"]["address"]["socket_address"] for e in lb]
    assert [(s["address"], s["port_value"]) for s in sockets] == [
        ("10.0.0.1", 8080),
        ("10.0.0.2", 9090),
    ]
    assert all(s["protocol"] == "TCP" for s in sockets)


def test_endpoint_with_no_endpoints_gives_empty_list():
    doc = render_json(templates.ENDPOINT, {"cluster_name": "svc", "lb_endpoints": []})
    assert doc["resource"]["resource"]["endpoints"][0]["lb_endpoints"] == []
    assert doc["resource"]["resource"]["cluster_name"] == "svc"


def test_eds_cluster_fields():
    doc = render_json(templates.EDS_CLUSTER, {"cluster_name": "c1", "eds_config": "c1-eds"})
    resource = doc["resource"]["resource"]
    assert resource["type"] == "EDS"
    assert resource["eds_cluster_config"]["service_name"] == "c1-eds"
    assert doc["general"]["collection"] == "clusters"


def test_basic_hcm_domains_and_match():
    data = {
        "name": "hcm1",
        "stat_prefix": "ingress",
        "codec_type": "AUTO",
        "domains": ["example.com", "*.example.com"],
        "match_key": "prefix",
        "match_value": "/",
        "cluster": "backend",
    }
    doc = render_json(templates.BASIC_HCM, data)
    vhost = doc["resource"]["resource"]["route_config"]["virtual_hosts"][0]
    assert vhost["domains"] == ["example.com", "*.example.com"]
    route = vhost["routes"][0]
    assert route["match"] == {"prefix": "/"}
    assert route["route"]["cluster"] == "backend"


def test_rds_hcm_route_config_name():
    doc = render_json(templates.RDS_HCM, {"name": "h", "codec_type": "AUTO", "stat_prefix": "s", "rds": "r1"})
    assert doc["resource"]["resource"]["rds"]["route_config_name"] == "r1"


@pytest.mark.parametrize(
    "template, field, gtype",
    [
        (
            templates.SINGLE_LISTENER_HTTP,
            "hcm",
            "envoy.extensions.filters.network.http_connection_manager.v3.HttpConnectionManager",
        ),
        (
            templates.SINGLE_LISTENER_TCP,
            "tcp_proxy",
            "envoy.extensions.filters.network.tcp_proxy.v3.TcpProxy",
        ),
    ],
)
def test_listener_names_and_discovery(template, field, gtype):
    data = {"name": "web", "protocol": "TCP", "address": "0.0.0.0", "port": 10000, field: "flt"}
    doc = render_json(template, data)
    listener = doc["resource"]["resource"][0]
    assert listener["name"] == "webaaaaaa"
    chain = listener["filter_chains"][0]
    assert chain["name"] == "webaaaaaa-fcbbbbbb"
    filter_name = chain["filters"][0]["name"]
    assert filter_name == "webaaaaaa-fcbbbbbb-filtercccccc"
    discovery = doc["general"]["config_discovery"][0]
    assert discovery["parent_name"] == filter_name
    assert discovery["name"] == "flt"
    assert discovery["gtype"] == gtype
    assert chain["filters"][0]["config_discovery"]["type_urls"] == [gtype]
    assert listener["address"]["socket_address"]["port_value"] == 10000


def test_route_with_vhds_and_virtual_host():
    route = render_json(templates.ROUTE_WITH_VHDS, {"name": "rt", "vhds": "vh"})
    assert route["general"]["config_discovery"][0]["name"] == "vh"
    assert route["general"]["config_discovery"][0]["parent_name"] == "rt"

    data = {"name": "vh", "domains": ["a.example.com"], "match_key": "path", "match_value": "/x", "cluster": "c"}
    vhost = render_json(templates.VIRTUAL_HOST, data)
    entry = vhost["resource"]["resource"][0]
    assert entry["domains"] == ["a.example.com"]
    assert entry["routes"][0]["match"] == {"path": "/x"}


def test_direct_virtual_host_route_and_tcp_proxy():
    data = {"name": "rt", "domains": ["*"], "match_key": "prefix", "match_value": "/", "cluster": "c"}
    doc = render_json(templates.ROUTE_WITH_DIRECT_VIRTUAL_HOST, data)
    assert doc["resource"]["resource"]["virtual_hosts"][0]["routes"][0]["route"]["cluster"] == "c"

    tcp = render_json(templates.TCP_PROXY, {"name": "t", "stat_prefix": "tcp", "cluster": "c"})
    assert tcp["resource"]["resource"] == {"stat_prefix": "tcp", "cluster": "c"}


def test_missing_value_is_marked():
    doc = render_json(templates.TCP_PROXY, {"name": "t", "cluster": "c"})
    assert doc["resource"]["resource"]["stat_prefix"] == "<no value>"


def test_missing_domains_render_as_null():
    data = {"name": "vh", "match_key": "prefix", "match_value": "/", "cluster": "c"}
    doc = render_json(templates.VIRTUAL_HOST, data)
    assert doc["resource"]["resource"][0]["domains"] is None


def test_missing_number_breaks_json():
    data = {"name": "web", "protocol": "TCP", "address": "0.0.0.0", "hcm": "h"}
    with pytest.raises(json.JSONDecodeError):
        render_json(templates.SINGLE_LISTENER_HTTP, data)


def test_malformed_template_raises():
    with pytest.raises(jinja2.TemplateSyntaxError):
        render_template("{% for x in %}", {}, "1", "p")