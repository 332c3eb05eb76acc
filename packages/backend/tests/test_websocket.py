"""End-to-end tests through the real app: WebSocket gateway, REST reads, static files.

Learn: Starlette's TestClient runs the app (lifespan included) on its own
event loop; several websocket_connect() sessions can be open at once, which
is how the multi-client fan-out is exercised here.
"""

from conftest import listing_payload


def _create(ws, **overrides) -> str:
    ws.send_json({"type": "create_listing", "payload": listing_payload(**overrides)})
    ack = ws.receive_json()
    assert ack["type"] == "create_ack", ack
    return ack["payload"]["id"]


def test_new_connection_starts_with_empty_snapshot(client):
    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json() == {"type": "catalog_snapshot", "payload": []}


def test_camera_scenario_end_to_end(client):
    """Alice creates, Bob (already connected) is told, both see it in list_all."""
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice.receive_json()
        bob.receive_json()

        listing_id = _create(alice)
        assert listing_id

        created = bob.receive_json()
        assert created["type"] == "listing_created"
        assert created["payload"]["id"] == listing_id
        assert created["payload"]["name"] == "Camera"
        assert created["payload"]["createdOrUpdatedAt"] > 0

        for ws in (alice, bob):
            ws.send_json({"type": "list_all"})
            snapshot = ws.receive_json()
            # Alice's next frame is the snapshot, not a copy of her own create
            assert snapshot["type"] == "catalog_snapshot"
            assert [r["id"] for r in snapshot["payload"]] == [listing_id]


def test_snapshot_reflects_all_previous_changes(client):
    with client.websocket_connect("/ws") as alice:
        alice.receive_json()
        first = _create(alice, name="First")
        second = _create(alice, name="Second")
        third = _create(alice, name="Third")

        alice.send_json({"type": "update_listing", "payload": {"id": first, "price": 99}})
        assert alice.receive_json()["type"] == "update_ack"
        alice.send_json({"type": "delete_listing", "payload": {"id": second}})
        assert alice.receive_json()["type"] == "delete_ack"

    with client.websocket_connect("/ws") as late:
        snapshot = late.receive_json()
        assert snapshot["type"] == "catalog_snapshot"
        assert [r["id"] for r in snapshot["payload"]] == [first, third]
        assert snapshot["payload"][0]["price"] == 99


def test_malformed_frame_keeps_connection_usable(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice.receive_json()
        bob.receive_json()

        alice.send_text("{this is not json")
        assert alice.receive_json() == {"type": "error", "payload": "Invalid message format"}

        alice.send_bytes(b"\x00\x01")
        assert alice.receive_json()["type"] == "error"

        listing_id = _create(alice)
        assert bob.receive_json()["payload"]["id"] == listing_id


def test_deeply_nested_frame_is_rejected_and_session_survives(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_text("[" * 200_000)
        assert ws.receive_json() == {"type": "error", "payload": "Invalid message format"}

        ws.send_json({"type": "list_all"})
        assert ws.receive_json() == {"type": "catalog_snapshot", "payload": []}


def test_delete_notifies_others_and_second_delete_is_quiet(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice.receive_json()
        bob.receive_json()
        listing_id = _create(alice)
        bob.receive_json()

        bob.send_json({"type": "delete_listing", "payload": {"id": listing_id}})
        assert bob.receive_json() == {"type": "delete_ack", "payload": {"id": listing_id}}
        assert alice.receive_json() == {"type": "listing_deleted", "payload": {"id": listing_id}}

        bob.send_json({"type": "delete_listing", "payload": {"id": listing_id}})
        assert bob.receive_json() == {"type": "delete_ack", "payload": {"id": listing_id}}

        # Alice's next frame answers her own request, no duplicate listing_deleted
        alice.send_json({"type": "list_all"})
        assert alice.receive_json() == {"type": "catalog_snapshot", "payload": []}


def test_legacy_client_protocol_on_root_path(client):
    with client.websocket_connect("/") as old_client:
        assert old_client.receive_json()["type"] == "catalog_snapshot"

        body = listing_payload(id="p-1")
        body["sellerWhatsApp"] = body.pop("sellerContact")
        old_client.send_json({"type": "add_product", "data": body})
        assert old_client.receive_json() == {"type": "create_ack", "payload": {"id": "p-1"}}

        old_client.send_json({"type": "delete_product", "id": "p-1"})
        assert old_client.receive_json() == {"type": "delete_ack", "payload": {"id": "p-1"}}


def test_errors_go_to_sender_only(client):
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice.receive_json()
        bob.receive_json()

        alice.send_json({"type": "update_listing", "payload": {"id": "ghost", "name": "x"}})
        err = alice.receive_json()
        assert err["type"] == "error"
        assert "not found" in err["payload"]

        bob.send_json({"type": "list_all"})
        assert bob.receive_json() == {"type": "catalog_snapshot", "payload": []}


def test_seller_catalog_over_websocket(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        mine = _create(ws, sellerId="u1")
        _create(ws, sellerId="u2")

        ws.send_json({"type": "list_by_seller", "payload": {"sellerId": "u1"}})
        result = ws.receive_json()
        assert result["type"] == "seller_catalog"
        assert [r["id"] for r in result["payload"]] == [mine]


def test_disconnect_deregisters_session(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        assert client.get("/api/v1/health").json()["sessions"] == 1
    assert client.get("/api/v1/health").json()["sessions"] == 0


# ═══════════════════════════════════════════════════════════
# HTTP surface
# ═══════════════════════════════════════════════════════════


def test_health_reports_database(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["database"] == "ok"
    assert "version" in data


def test_rest_reads_match_the_socket_view(client):
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        listing_id = _create(ws, sellerId="u9")

    listings = client.get("/api/v1/listings").json()
    assert [r["id"] for r in listings] == [listing_id]
    assert listings[0]["paymentOption"] == "Cash"

    assert client.get(f"/api/v1/listings/{listing_id}").json()["sellerId"] == "u9"
    assert client.get("/api/v1/listings/missing").status_code == 404
    assert len(client.get("/api/v1/sellers/u9/listings").json()) == 1


def test_static_index_and_missing_file(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "Marketplace" in resp.text
    assert client.get("/no/such/file.js").status_code == 404


def test_uploaded_image_is_served(client):
    import base64

    data_url = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake").decode()
    with client.websocket_connect("/ws") as alice, client.websocket_connect("/ws") as bob:
        alice.receive_json()
        bob.receive_json()
        _create(alice, imageRef=data_url)
        image_ref = bob.receive_json()["payload"]["imageRef"]

    resp = client.get(image_ref)
    assert resp.status_code == 200
    assert resp.content == b"\x89PNG fake"
