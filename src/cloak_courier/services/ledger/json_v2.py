"""Adapter for the second-generation (``/v2``) ledger JSON API.

Generation B differs from A in three ways the rest of the service never sees:

- writes are command envelopes whose result is an event list,
- queries are point-in-time snapshots with no server-side field filtering,
- there is no key lookup at all.

The application authenticates once; acting and reading identities travel in
the request body.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from cloak_courier.core.errors import LedgerRejected
from cloak_courier.services.ledger.base import ContractRef, LedgerAdapter

logger = logging.getLogger(__name__)

SUBMIT_PATH = "/v2/commands/submit-and-wait-for-transaction"
DUPLICATE_MARKERS = ("ALREADY_EXISTS", "duplicate")


def _created_payload(event: Mapping[str, Any]) -> Mapping[str, Any]:
    return event.get("createArgument") or event.get("createArguments") or {}


def matches(payload: Mapping[str, Any], expected: Mapping[str, Any]) -> bool:
    """Return True if every field of ``expected`` equals the payload's value."""
    return all(payload.get(name) == value for name, value in expected.items())


class JsonApiV2Adapter(LedgerAdapter):
    """Ledger adapter for generation B of the JSON API."""

    api_version = "v2"

    def _auth_headers(self, identity: str | None) -> dict[str, str]:
        token = self.config.auth_token or self.tokens.admin_token()
        return {"Authorization": f"Bearer {token}"}

    def template_id(self, template: str) -> str:
        return f"#{self.config.package_name}:Main:{template}"

    # --- Discovery ------------------------------------------------------------------

    async def discover(self) -> None:
        """Upload the application package; an existing upload is fine."""
        if not self.config.dar_path:
            logger.info("No DAR configured; assuming package is already installed")
            return
        try:
            archive = Path(self.config.dar_path).read_bytes()
        except OSError as exc:
            logger.warning("DAR upload skipped: %s", exc)
            return

        try:
            await self._request(
                self.RequestParams(
                    method="POST",
                    path="/v2/packages",
                    content=archive,
                    headers={"Content-Type": "application/octet-stream"},
                )
            )
        except LedgerRejected as exc:
            if any(marker in exc.body for marker in DUPLICATE_MARKERS):
                logger.info("Ledger package already uploaded")
                return
            logger.warning("DAR upload rejected (%s): %s", exc.status_code, exc.body[:200])
            return
        logger.info("Uploaded ledger package %s", self.config.package_name)

    # --- Commands -------------------------------------------------------------------

    async def _submit(self, acting: str, command: Mapping[str, Any]) -> dict[str, Any]:
        response = await self._request(
            self.RequestParams(
                method="POST",
                path=SUBMIT_PATH,
                identity=acting,
                json_data={
                    "commands": [dict(command)],
                    "userId": self.config.application_id,
                    "commandId": str(uuid.uuid4()),
                    "actAs": [acting],
                    "readAs": [acting],
                },
            )
        )
        return self._json(response) or {}

    @staticmethod
    def _find_created(transaction: Mapping[str, Any]) -> ContractRef | None:
        # Event order is not guaranteed; look for the creation explicitly.
        for event in transaction.get("events") or []:
            created = event.get("CreatedEvent")
            if created and created.get("contractId"):
                return ContractRef(
                    contract_id=str(created["contractId"]),
                    payload=_created_payload(created),
                )
        return None

    async def create_contract(
        self, acting: str, template: str, payload: Mapping[str, Any]
    ) -> ContractRef:
        data = await self._submit(
            acting,
            {
                "CreateCommand": {
                    "templateId": self.template_id(template),
                    "createArguments": dict(payload),
                }
            },
        )
        transaction = data.get("transaction") or {}
        created = self._find_created(transaction)
        if created is not None:
            return created

        update_id = transaction.get("updateId")
        if update_id:
            logger.warning(
                "No CreatedEvent in transaction %s for %s; using update id", update_id, template
            )
            return ContractRef(contract_id=str(update_id), payload=dict(payload), degraded=True)

        raise LedgerRejected(
            200,
            json.dumps(data)[:500],
            "Ledger transaction carried neither a CreatedEvent nor an update id",
        )

    async def exercise_choice(
        self,
        acting: str,
        template: str,
        contract_id: str,
        choice: str,
        argument: Mapping[str, Any] | None = None,
    ) -> ContractRef:
        data = await self._submit(
            acting,
            {
                "ExerciseCommand": {
                    "templateId": self.template_id(template),
                    "contractId": contract_id,
                    "choice": choice,
                    "choiceArgument": dict(argument or {}),
                }
            },
        )
        created = self._find_created(data.get("transaction") or {})
        return created or ContractRef(contract_id=contract_id)

    # --- Queries --------------------------------------------------------------------

    async def _ledger_end(self) -> int:
        response = await self._request(
            self.RequestParams(method="GET", path="/v2/state/ledger-end")
        )
        return int((self._json(response) or {}).get("offset") or 0)

    async def query_contracts(
        self,
        identity: str,
        template: str,
        filter: Mapping[str, Any] | None = None,
    ) -> list[ContractRef]:
        offset = await self._ledger_end()
        response = await self._request(
            self.RequestParams(
                method="POST",
                path="/v2/state/active-contracts",
                identity=identity,
                json_data={
                    "filter": {
                        "filtersByParty": {
                            identity: {
                                "cumulative": [
                                    {
                                        "identifierFilter": {
                                            "TemplateFilter": {
                                                "value": {
                                                    "templateId": self.template_id(template),
                                                    "includeCreatedEventBlob": False,
                                                }
                                            }
                                        }
                                    }
                                ]
                            }
                        }
                    },
                    "verbose": True,
                    "activeAtOffset": offset,
                },
            )
        )
        data = self._json(response)
        if isinstance(data, list):
            entries = data
        else:
            entries = (data or {}).get("contractEntries") or (data or {}).get("result") or []

        contracts: list[ContractRef] = []
        for entry in entries:
            active = (
                (entry.get("contractEntry") or {}).get("JsActiveContract")
                or entry.get("JsActiveContract")
                or entry
            )
            created = active.get("createdEvent") or {}
            if not created.get("contractId"):
                continue
            payload = _created_payload(created)
            # No server-side field filtering in this generation.
            if filter and not matches(payload, filter):
                continue
            contracts.append(ContractRef(contract_id=str(created["contractId"]), payload=payload))
        return contracts

    async def fetch_by_key(
        self, identity: str, template: str, key: Mapping[str, Any]
    ) -> ContractRef | None:
        for contract in await self.query_contracts(identity, template):
            if matches(contract.payload, key):
                return contract
        return None

    # --- Identities -----------------------------------------------------------------

    async def allocate_identity(self, hint: str, display_name: str) -> str:
        response = await self._request(
            self.RequestParams(
                method="POST",
                path="/v2/parties",
                json_data={"partyIdHint": hint, "identityProviderId": ""},
            )
        )
        return str(self._json(response)["partyDetails"]["party"])

    async def list_identities(self) -> list[str]:
        response = await self._request(self.RequestParams(method="GET", path="/v2/parties"))
        details = (self._json(response) or {}).get("partyDetails") or []
        return [str(entry["party"]) for entry in details]
