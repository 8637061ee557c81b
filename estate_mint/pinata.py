# estate_mint/pinata.py
import json
import logging
from typing import Dict, Optional

import requests

from .errors import ContentNotFoundError, DependencyError, DependencyTimeoutError

log = logging.getLogger(__name__)

PINATA_BASE_URL = "https://api.pinata.cloud"
PIN_FILE_URL = f"{PINATA_BASE_URL}/pinning/pinFileToIPFS"
PIN_JSON_URL = f"{PINATA_BASE_URL}/pinning/pinJSONToIPFS"


class PinataPublisher:
    """
    Content publisher backed by the Pinata pinning API.

    Pinning is not idempotent on Pinata's side, so callers publish a document
    once per request and keep the returned content id.
    """

    def __init__(
        self,
        jwt: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        gateway_url: str = "https://gateway.pinata.cloud/ipfs/",
        timeout: float = 8.0,
        session: Optional[requests.Session] = None,
    ):
        self.jwt = jwt
        self.api_key = api_key
        self.api_secret = api_secret
        self.gateway = gateway_url if gateway_url.endswith("/") else gateway_url + "/"
        self.timeout = timeout
        self.session = session or requests.Session()

    def _auth_headers(self) -> Dict[str, str]:
        """
        Build authorization headers for Pinata.
        """
        headers = {}
        if self.jwt:
            headers["Authorization"] = f"Bearer {self.jwt}"
        elif self.api_key and self.api_secret:
            headers["pinata_api_key"] = self.api_key
            headers["pinata_secret_api_key"] = self.api_secret
        else:
            raise DependencyError("Pinata credentials not configured")
        return headers

    def gateway_url(self, content_id: str) -> str:
        return f"{self.gateway}{content_id}"

    def _post(self, what: str, url: str, **kwargs) -> str:
        try:
            res = self.session.post(url, headers=self._auth_headers(), timeout=self.timeout, **kwargs)
            res.raise_for_status()
            body = res.json()
        except requests.Timeout as e:
            raise DependencyTimeoutError(f"Pinata {what} upload timed out") from e
        except (requests.RequestException, ValueError) as e:
            raise DependencyError(f"Pinata {what} upload failed: {e}") from e

        if not isinstance(body, dict):
            raise DependencyError(f"Pinata returned an unexpected {what} upload response")
        cid = body.get("IpfsHash") or body.get("ipfsHash")
        if not cid:
            raise DependencyError(f"Pinata did not return a CID for {what} upload")
        log.info("Pinned %s to IPFS: %s", what, cid)
        return cid

    def publish(self, data: bytes, filename: Optional[str] = None) -> str:
        """
        Uploads raw bytes to Pinata and returns the content id.
        """
        name = filename or "upload"
        payload = {
            "pinataMetadata": json.dumps({"name": name}),
            "pinataOptions": json.dumps({"cidVersion": 1}),
        }
        return self._post("file", PIN_FILE_URL, files={"file": (name, data)}, data=payload)

    def publish_json(self, document: dict, name: Optional[str] = None) -> str:
        """
        Pins a JSON document to Pinata and returns the content id.
        """
        payload = {
            "pinataOptions": {"cidVersion": 1},
            "pinataMetadata": {"name": name or "metadata.json"},
            "pinataContent": document,
        }
        return self._post("JSON", PIN_JSON_URL, json=payload)

    def fetch(self, content_id: str) -> bytes:
        try:
            res = self.session.get(self.gateway_url(content_id), timeout=self.timeout)
        except requests.Timeout as e:
            raise DependencyTimeoutError(f"gateway fetch of {content_id} timed out") from e
        except requests.RequestException as e:
            raise DependencyError(f"gateway fetch of {content_id} failed: {e}") from e
        if res.status_code == 404:
            raise ContentNotFoundError(content_id)
        if res.status_code != 200:
            raise DependencyError(f"gateway returned status {res.status_code} for {content_id}")
        return res.content
