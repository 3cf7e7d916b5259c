"""Adapter for the first-generation (``/v1``) ledger JSON API.

Every call carries a JWT signed for the acting identity. Template identifiers
are qualified by the package hash, which is discovered once at startup.
"""

from __future__ import annotations

import logging
import re
import zipfile
from collections.abc import Mapping
from typing import Any

from cloak_courier.core.errors import LedgerNotReady, LedgerRejected
from cloak_courier.services.ledger.base import PROBE_TEMPLATES, ContractRef, LedgerAdapter

logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404
HTTP_OK = 200


def _contract(result: Mapping[str, Any]) -> ContractRef:
    return ContractRef(
        contract_id=str(result["contractId"]),
        payload=result.get("payload") or {},
    )


def encode_key(key: Mapping[str, Any]) -> Any:
    """Encode key fields the way the v1 API expects a contract key.

    Single-field keys are sent bare; composite keys become a tuple record
    (``_1``, ``_2``, ...) in field order.
    """
    values = list(key.values())
    if len(values) == 1:
        return values[0]
    return {f"_{index}": value for index, value in enumerate(values, start=1)}


class JsonApiV1Adapter(LedgerAdapter):
    """Ledger adapter for generation A of the JSON API."""

    api_version = "v1"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._package_id: str | None = None

    @property
    def package_id(self) -> str | None:
        return self._package_id

    def _auth_headers(self, identity: str | None) -> dict[str, str]:
        token = self.config.auth_token or self.tokens.acting_token(
            identity or self.admin_identity
        )
        return {"Authorization": f"Bearer {token}"}

    def template_id(self, template: str) -> str:
        if self._package_id is None:
            raise LedgerNotReady("Package id not discovered; call discover() first")
        return f"{self._package_id}:Main:{template}"

    # --- Discovery ------------------------------------------------------------------

    async def discover(self) -> None:
        if self._package_id is not None:
            return
        package_id = self._package_id_from_dar()
        if package_id is None:
            logger.info("Package id not found in DAR, probing ledger packages")
            package_id = await self._probe_packages()
        self._package_id = package_id
        logger.info("Using ledger package %s…", package_id[:16])

    def _package_id_from_dar(self) -> str | None:
        if not self.config.dar_path:
            return None
        pattern = re.compile(
            rf"{re.escape(self.config.package_name)}-"
            rf"{re.escape(self.config.package_version)}-([a-f0-9]+)\.dalf"
        )
        try:
            with zipfile.ZipFile(self.config.dar_path) as archive:
                names = archive.namelist()
        except (OSError, zipfile.BadZipFile) as exc:
            logger.warning("Could not read DAR %s: %s", self.config.dar_path, exc)
            return None

        for name in names:
            match = pattern.search(name)
            if match:
                return match.group(1)
        return None

    async def _probe_packages(self) -> str:
        response = await self._request(
            self.RequestParams(method="GET", path="/v1/packages", identity=self.admin_identity)
        )
        for package_id in self._json(response).get("result") or []:
            if await self._package_has_templates(package_id):
                return package_id
        raise LedgerNotReady(
            f"No ledger package exposes {', '.join(PROBE_TEMPLATES)}; is the DAR uploaded?"
        )

    async def _package_has_templates(self, package_id: str) -> bool:
        for template in PROBE_TEMPLATES:
            try:
                response = await self._request(
                    self.RequestParams(
                        method="POST",
                        path="/v1/query",
                        identity=self.admin_identity,
                        json_data={"templateIds": [f"{package_id}:Main:{template}"]},
                    )
                )
            except LedgerRejected:
                return False
            if self._json(response).get("status", HTTP_OK) != HTTP_OK:
                return False
        return True

    # --- Contract operations --------------------------------------------------------

    async def _post(self, endpoint: str, identity: str, body: Mapping[str, Any]) -> Any:
        response = await self._request(
            self.RequestParams(
                method="POST", path=f"/v1/{endpoint}", identity=identity, json_data=body
            )
        )
        return self._json(response).get("result")

    async def create_contract(
        self, acting: str, template: str, payload: Mapping[str, Any]
    ) -> ContractRef:
        result = await self._post(
            "create",
            acting,
            {"templateId": self.template_id(template), "payload": dict(payload)},
        )
        return _contract(result)

    async def exercise_choice(
        self,
        acting: str,
        template: str,
        contract_id: str,
        choice: str,
        argument: Mapping[str, Any] | None = None,
    ) -> ContractRef:
        result = await self._post(
            "exercise",
            acting,
            {
                "templateId": self.template_id(template),
                "contractId": contract_id,
                "choice": choice,
                "argument": dict(argument or {}),
            },
        )
        for event in (result or {}).get("events") or []:
            created = event.get("created")
            if created and created.get("contractId"):
                return _contract(created)
        return ContractRef(contract_id=contract_id)

    async def query_contracts(
        self,
        identity: str,
        template: str,
        filter: Mapping[str, Any] | None = None,
    ) -> list[ContractRef]:
        body: dict[str, Any] = {"templateIds": [self.template_id(template)]}
        if filter:
            body["query"] = dict(filter)
        result = await self._post("query", identity, body)
        return [_contract(entry) for entry in result or []]

    async def fetch_by_key(
        self, identity: str, template: str, key: Mapping[str, Any]
    ) -> ContractRef | None:
        response = await self._request(
            self.RequestParams(
                method="POST",
                path="/v1/fetch",
                identity=identity,
                json_data={"templateId": self.template_id(template), "key": encode_key(key)},
                allow_statuses=(HTTP_NOT_FOUND,),
            )
        )
        if response.status_code == HTTP_NOT_FOUND:
            return None
        result = self._json(response).get("result")
        return _contract(result) if result else None

    # --- Identities -----------------------------------------------------------------

    async def allocate_identity(self, hint: str, display_name: str) -> str:
        result = await self._post(
            "parties/allocate",
            self.admin_identity,
            {"identifierHint": hint, "displayName": display_name},
        )
        return str(result["identifier"])

    async def list_identities(self) -> list[str]:
        response = await self._request(
            self.RequestParams(method="GET", path="/v1/parties", identity=self.admin_identity)
        )
        return [str(entry["identifier"]) for entry in self._json(response).get("result") or []]
