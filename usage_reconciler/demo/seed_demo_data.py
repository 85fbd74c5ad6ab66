# usage_reconciler/demo/seed_demo_data.py

import json

from usage_reconciler.api.handlers import UsageAPI

DEMO_BATCHES = [
    (
        {"x-user-id": "jane@example.com"},
        [
            {"modelName": "Stable Diffusion", "imageCount": 4},
            {"modelName": "DALL-E", "imageCount": 2},
        ],
    ),
    (
        {"Authorization": "Bearer user_123"},
        {"model": "Midjourney", "count": 6},
    ),
    (
        {},
        [
            {"model": "Stable Diffusion", "count": 3, "email": "sam@example.com"},
            {"modelName": "DALL-E", "imageCount": 1, "user_id": "test_qa"},
        ],
    ),
]


def seed_demo_data(api: UsageAPI) -> int:
    """Post the demo batches through the ingestion endpoint.

    Returns the number of events accepted.
    """
    accepted = 0
    for headers, body in DEMO_BATCHES:
        response = api.post_usage(json.dumps(body), headers)
        if not response.ok:
            raise RuntimeError(f"Demo seed rejected: {response.body.get('error')}")
        data = response.body["data"]
        accepted += sum(1 for item in data if item["success"]) if isinstance(data, list) else 1
    return accepted
