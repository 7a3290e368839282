import pytest

from apisixsync.core.admin_client import AdminClient, DecodeError
from apisixsync.core.normalizer import (
    ResponseShape,
    fetch_records,
    node_values,
    plugin_records,
    shape_for,
)

API_KEY = "TEST"


def test_plugin_names_get_stream_flag_in_order():
    out = plugin_records(["mqtt-proxy", "foo", "dubbo-proxy"])
    assert out == [
        {"name": "mqtt-proxy", "stream": True},
        {"name": "foo"},
        {"name": "dubbo-proxy", "stream": True},
    ]


def test_plugin_payload_must_be_list_of_strings():
    with pytest.raises(DecodeError):
        plugin_records({"node": {}})
    with pytest.raises(DecodeError):
        plugin_records(["ok", 3])


def test_node_tree_keeps_only_values():
    payload = {
        "node": {
            "nodes": [
                {"key": "/apisix/routes/1", "value": {"id": "1", "uri": "/a"}},
                {"key": "/apisix/routes/2"},
                {"key": "/apisix/routes/3", "value": {"id": "3", "uri": "/c"}},
            ]
        }
    }
    assert node_values(payload) == [{"id": "1", "uri": "/a"}, {"id": "3", "uri": "/c"}]


def test_single_resource_is_folded_into_list():
    payload = {"node": {"key": "/apisix/upstreams/1", "value": {"id": "1", "name": "svcA"}}}
    assert node_values(payload) == [{"id": "1", "name": "svcA"}]


def test_v3_list_and_single_shapes():
    assert node_values({"total": 1, "list": [{"key": "k", "value": {"id": "1"}}]}) == [{"id": "1"}]
    assert node_values({"key": "k", "value": {"id": "2"}}) == [{"id": "2"}]


def test_empty_and_unknown_shapes():
    assert node_values({"node": {"dir": True, "nodes": {}}}) == []
    assert node_values(None) == []
    assert node_values(["a"]) == []


def test_shape_for():
    assert shape_for("plugins/list") is ResponseShape.PLUGIN_NAMES
    assert shape_for("routes") is ResponseShape.NODE_TREE


def test_fetch_records_against_admin_api(apisix):
    fake, admin_url = apisix
    fake.plugins = ["mqtt-proxy", "foo", "dubbo-proxy"]
    fake.collections["routes"] = [{"id": "1", "uri": "/a"}, {"id": "2", "uri": "/b"}]
    client = AdminClient(admin_url, api_key=API_KEY, timeout_sec=2)

    assert [r["name"] for r in fetch_records(client, "plugins/list")] == ["mqtt-proxy", "foo", "dubbo-proxy"]
    assert fetch_records(client, "routes") == [{"id": "1", "uri": "/a"}, {"id": "2", "uri": "/b"}]
    assert fetch_records(client, "consumers") == []
