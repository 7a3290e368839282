import socket
import threading

import pytest
import requests

from apisixsync.core.admin_client import AdminClient, DecodeError, GatewayRejection, TransportError

API_KEY = "TEST"


def _closed_port():
    s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def test_get_json_ok(apisix):
    fake, admin_url = apisix
    fake.upstreams["1"] = {"id": "1", "name": "svcA", "nodes": {"10.0.0.1:80": 1}}
    client = AdminClient(admin_url, api_key=API_KEY, timeout_sec=2)

    data = client.get_json("upstreams")
    assert data["node"]["nodes"][0]["value"]["name"] == "svcA"
    assert fake.calls == [("GET", "upstreams")]


def test_url_for_joins_prefix():
    client = AdminClient("http://gw:9180/", "apisix/admin/", api_key="k")
    assert client.url_for("upstreams/1/nodes") == "http://gw:9180/apisix/admin/upstreams/1/nodes"


def test_wrong_api_key_is_rejected(apisix):
    fake, admin_url = apisix
    client = AdminClient(admin_url, api_key="WRONG", timeout_sec=2)
    with pytest.raises(GatewayRejection) as ei:
        client.get_json("routes")
    assert ei.value.status == 401


def test_no_retry_on_5xx(apisix):
    fake, admin_url = apisix
    fake.overrides[("GET", "routes")] = (500, '{"error_msg": "boom"}')
    client = AdminClient(admin_url, api_key=API_KEY, timeout_sec=2)

    with pytest.raises(GatewayRejection) as ei:
        client.get_json("routes")
    assert ei.value.status == 500
    assert "boom" in ei.value.body
    assert fake.count("GET", "routes") == 1


def test_invalid_json_raises_decode_error(apisix):
    fake, admin_url = apisix
    fake.overrides[("GET", "routes")] = (200, "<html>oops</html>")
    client = AdminClient(admin_url, api_key=API_KEY, timeout_sec=2)

    with pytest.raises(DecodeError) as ei:
        client.get_json("routes")
    assert "oops" in ei.value.body


def test_empty_body_decodes_to_none(apisix):
    fake, admin_url = apisix
    fake.overrides[("GET", "routes")] = (200, "")
    client = AdminClient(admin_url, api_key=API_KEY, timeout_sec=2)
    assert client.get_json("routes") is None


def test_connection_refused_is_transport_error():
    client = AdminClient(f"http://127.0.0.1:{_closed_port()}", api_key=API_KEY, timeout_sec=1)
    with pytest.raises(TransportError):
        client.get_json("routes")


def test_put_sends_body_verbatim(apisix):
    fake, admin_url = apisix
    client = AdminClient(admin_url, api_key=API_KEY, timeout_sec=2)
    resp = client.put_raw("upstreams/svcA", '{"name": "svcA", "nodes": {}}')
    assert resp.status_code == 201
    assert fake.bodies[-1] == '{"name": "svcA", "nodes": {}}'
    assert fake.upstreams["svcA"]["name"] == "svcA"


def test_each_thread_gets_its_own_session():
    client = AdminClient("http://gw:9180", api_key="k")
    main_session = client.session
    assert client.session is main_session

    seen = {}

    def worker(i):
        seen[i] = client.session

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    sessions = [main_session, seen[0], seen[1]]
    assert len({id(s) for s in sessions}) == 3
    assert all(s.headers["X-API-KEY"] == "k" for s in sessions)


def test_supplied_session_is_used_by_constructing_thread(apisix):
    fake, admin_url = apisix
    session = requests.Session()
    client = AdminClient(admin_url, api_key=API_KEY, timeout_sec=2, session=session)

    assert client.session is session
    assert client.get_json("plugins/list") == fake.plugins
