import json
import logging
import os
import sys

import requests
from dotenv import load_dotenv

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

POST_URL = "https://jsonplaceholder.typicode.com/posts"

PAYLOAD = {
    "title": "foo",
    "body": "bar",
    "userId": "1",
}


def post_json(url, payload, timeout=10):
    """POST payload as JSON and return the decoded response body."""
    response = requests.post(url, json=payload, timeout=timeout)
    logger.info(f"POST {url} -> {response.status_code}")
    response.raise_for_status()
    return response.json()


def main():
    url = os.getenv('POST_URL', POST_URL)
    try:
        result = post_json(url, PAYLOAD)
    except requests.RequestException as e:
        logger.error(f"POST to {url} failed: {e}")
        sys.exit(1)
    print(json.dumps(result, indent=2))


if __name__ == '__main__':
    main()
