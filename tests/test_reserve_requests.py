def test_accept_reserve_request(client, tenant_id, make_bags, make_employee) -> None:
    seller = make_employee(first_name="Riley", last_name="Seller", role="seller")
    manager = make_employee(first_name="Morgan", last_name="Lead", role="manager")
    bags = make_bags(count=2)
    ids = [b["bag_id"] for b in bags]

    create_resp = client.post(
        "/api/v1/reserve-requests",
        json={"tenant_id": tenant_id, "employee_id": seller["employee_id"], "bag_ids": ids},
    )
    assert create_resp.status_code == 200
    request = create_resp.json()["data"]
    assert request["status"] == "pending"
    assert request["bag_ids"] == ids

    overlapping = client.post(
        "/api/v1/reserve-requests",
        json={"tenant_id": tenant_id, "employee_id": manager["employee_id"], "bag_ids": [ids[0]]},
    )
    assert overlapping.status_code == 409

    accepted = client.post(
        f"/api/v1/reserve-requests/{request['reserve_request_id']}/accept",
        json={"decided_by_employee_id": manager["employee_id"]},
    )
    assert accepted.status_code == 200
    assert accepted.json()["data"]["status"] == "accepted"

    for bag_id in ids:
        bag = client.get(f"/api/v1/bags/{bag_id}").json()["data"]
        assert bag["current_status"] == "reserved"
        assert bag["reserved_for"] == "Riley Seller"

    again = client.post(f"/api/v1/reserve-requests/{request['reserve_request_id']}/accept", json={})
    assert again.status_code == 409


def test_reject_reserve_request_leaves_bags(client, tenant_id, make_bags, make_employee) -> None:
    seller = make_employee(role="seller")
    bag = make_bags(count=1)[0]
    request_id = client.post(
        "/api/v1/reserve-requests",
        json={"tenant_id": tenant_id, "employee_id": seller["employee_id"], "bag_ids": [bag["bag_id"]]},
    ).json()["data"]["reserve_request_id"]

    resp = client.post(f"/api/v1/reserve-requests/{request_id}/reject", json={})
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "rejected"
    assert client.get(f"/api/v1/bags/{bag['bag_id']}").json()["data"]["current_status"] == "in_inventory"

    # a closed request no longer blocks the bag
    retry = client.post(
        "/api/v1/reserve-requests",
        json={"tenant_id": tenant_id, "employee_id": seller["employee_id"], "bag_ids": [bag["bag_id"]]},
    )
    assert retry.status_code == 200

    pending = client.get(
        "/api/v1/reserve-requests",
        params={"tenant_id": tenant_id, "status": "pending"},
    ).json()["data"]
    assert [r["reserve_request_id"] for r in pending] == [retry.json()["data"]["reserve_request_id"]]


def test_reserve_request_needs_bags_in_inventory(client, tenant_id, make_bags, make_employee) -> None:
    seller = make_employee()
    bag = make_bags(count=1)[0]
    client.post(f"/api/v1/bags/{bag['bag_id']}/status", json={"status": "sold"})

    resp = client.post(
        "/api/v1/reserve-requests",
        json={"tenant_id": tenant_id, "employee_id": seller["employee_id"], "bag_ids": [bag["bag_id"]]},
    )
    assert resp.status_code == 409


def test_accept_fails_when_bag_left_inventory(client, tenant_id, make_bags, make_employee) -> None:
    seller = make_employee()
    bag = make_bags(count=1)[0]
    request_id = client.post(
        "/api/v1/reserve-requests",
        json={"tenant_id": tenant_id, "employee_id": seller["employee_id"], "bag_ids": [bag["bag_id"]]},
    ).json()["data"]["reserve_request_id"]
    client.post(f"/api/v1/bags/{bag['bag_id']}/status", json={"status": "missing"})

    resp = client.post(f"/api/v1/reserve-requests/{request_id}/accept", json={})
    assert resp.status_code == 409
    assert client.get(f"/api/v1/reserve-requests/{request_id}").json()["data"]["status"] == "pending"


def test_unknown_reserve_request_is_404(client) -> None:
    assert client.get("/api/v1/reserve-requests/42").status_code == 404
    assert client.post("/api/v1/reserve-requests/42/reject", json={}).status_code == 404
