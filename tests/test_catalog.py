import base64

from conftest import add_customer

from wacrm.domain.catalog.service import merge_image_urls


def services(client, account, **payload):
    return client.post("/manage-services", json=payload, headers=account.headers)


def create_service(client, account, name="Wedding Cakes", packages=None, **extra):
    return services(
        client,
        account,
        operation="create",
        service_name=name,
        description="Custom tiers",
        packages=packages or [
            {"package_name": "Deluxe", "price": 300},
            {"package_name": "Basic", "price": 120, "discount": 5},
        ],
        **extra,
    )


def test_create_service_with_packages(client, agent):
    response = create_service(client, agent)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    service = body["data"]
    assert service["service_name"] == "Wedding Cakes"
    assert [p["package_name"] for p in service["packages"]] == ["Basic", "Deluxe"]
    assert service["packages"][0]["currency"] == "LKR"


def test_create_service_validation(client, agent):
    assert services(client, agent, operation="create", packages=[{}]).json()["detail"] == "service_name is required"
    assert services(client, agent, operation="create", service_name="X", packages=[]).json()["detail"] == (
        "packages array is required and must not be empty"
    )
    assert create_service(client, agent, packages=[{"package_name": "A", "price": -1}]).json()["detail"] == (
        "Valid package price is required"
    )
    assert services(client, agent, operation="archive").status_code == 400


def test_duplicate_service_name_is_409(client, agent):
    create_service(client, agent)
    response = create_service(client, agent)
    assert response.status_code == 409
    assert response.json()["detail"] == "Service name already exists"


def test_get_services_sorted_by_price(client, agent):
    create_service(client, agent, name="Cakes", packages=[{"package_name": "Slice", "price": 10}])
    create_service(client, agent, name="Catering", packages=[{"package_name": "Buffet", "price": 500}])

    ascending = services(client, agent, operation="get", sort_by="price", sort_order="asc").json()["data"]
    assert [s["service_name"] for s in ascending] == ["Cakes", "Catering"]

    filtered = services(client, agent, operation="get", package_name="buff").json()["data"]
    assert [s["service_name"] for s in filtered] == ["Catering"]

    bad = services(client, agent, operation="get", sort_by="name")
    assert bad.json()["detail"] == "Invalid sort_by parameter. Use price or created_at"


def test_update_service_and_package(client, r2, agent):
    r2.objects["agt_test/services/old.jpg"] = (b"old", "image/jpeg")
    service = create_service(
        client, agent, image_urls=["https://media.example.com/agt_test/services/old.jpg"]
    ).json()["data"]

    updated = services(
        client,
        agent,
        operation="update",
        type="service",
        id=service["id"],
        updates={"description": "Now with fondant", "image_urls": {"add": ["https://media.example.com/agt_test/new.jpg"]}},
        removed_image_urls=["https://media.example.com/agt_test/services/old.jpg"],
    ).json()["data"]
    assert updated["description"] == "Now with fondant"
    assert updated["image_urls"] == ["https://media.example.com/agt_test/new.jpg"]
    assert "agt_test/services/old.jpg" not in r2.objects

    package_id = service["packages"][0]["id"]
    package = services(
        client, agent, operation="update", type="package", id=package_id, updates={"price": 99}
    ).json()["data"]
    assert package["price"] == 99

    bad_type = services(client, agent, operation="update", type="bundle", id=service["id"], updates={"x": 1})
    assert bad_type.json()["detail"] == 'type must be "service" or "package"'


def test_delete_service_blocked_by_orders(client, db, agent):
    service = create_service(client, agent).json()["data"]
    customer_id = add_customer(db, agent)
    client.post(
        "/manage-orders",
        json={
            "customer_id": customer_id,
            "items": [{"name": "Basic", "quantity": 1, "price": 120, "package_id": service["packages"][0]["id"]}],
        },
        headers=agent.headers,
    )

    response = services(client, agent, operation="delete", id=service["id"])

    assert response.status_code == 403
    assert response.json()["detail"] == "Cannot delete: service has dependencies"


def test_delete_service(client, agent):
    service = create_service(client, agent).json()["data"]

    body = services(client, agent, operation="delete", id=service["id"]).json()

    assert body["data"]["deleted_packages"] == 2
    assert services(client, agent, operation="get").json()["data"] == []
    assert services(client, agent, operation="delete", id=service["id"]).status_code == 404


def test_upload_service_images(client, r2, agent, other_agent):
    image = {"fileName": "cake.PNG", "fileBase64": base64.b64encode(b"png").decode(), "fileType": "image/png"}

    response = client.post(
        "/upload-service-images",
        json={"agentId": agent.agent_id, "serviceId": "svc-1", "images": [image]},
        headers=agent.headers,
    )

    urls = response.json()["urls"]
    assert len(urls) == 1
    assert urls[0].startswith("https://media.example.com/agt_test/services/svc-1/")
    assert urls[0].endswith(".png")

    foreign = client.post(
        "/upload-service-images", json={"agentId": other_agent.agent_id, "images": [image]}, headers=agent.headers
    )
    assert foreign.status_code == 403

    not_image = dict(image, fileType="application/pdf")
    rejected = client.post("/upload-service-images", json={"images": [not_image]}, headers=agent.headers)
    assert rejected.json()["detail"] == "Only image files are allowed"

    too_many = client.post("/upload-service-images", json={"images": [image] * 11}, headers=agent.headers)
    assert too_many.json()["detail"] == "Maximum 10 images allowed"


def test_merge_image_urls():
    assert merge_image_urls(["a", "b"], ["c"], None) == ["c"]
    assert merge_image_urls(["a", "b"], {"add": ["b", "c"], "remove": ["a"]}, None) == ["b", "c"]
    assert merge_image_urls(["a", "b"], None, ["b"]) == ["a"]
