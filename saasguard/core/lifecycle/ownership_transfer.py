"""Transfer of resources owned by a departing user."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import structlog

from saasguard.connectors.factory import create_connector
from saasguard.core.exceptions import SaasGuardError
from saasguard.storage import Storage
from saasguard.storage.queries import get_user, list_identity_providers

logger = structlog.get_logger(__name__)

GOOGLE_DRIVE = "Google Drive"


@dataclass
class TransferResult:
    success: bool
    platform: str
    resources_transferred: int = 0
    errors: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransferSummary:
    total_resources: int
    successful_transfers: int
    failed_transfers: int
    platforms: List[str]
    errors: List[str]

    @classmethod
    def from_results(cls, results: List[TransferResult]) -> "TransferSummary":
        return cls(
            total_resources=sum(r.resources_transferred for r in results),
            successful_transfers=sum(1 for r in results if r.success),
            failed_transfers=sum(1 for r in results if not r.success),
            platforms=[r.platform for r in results],
            errors=[e for r in results for e in r.errors],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_resources": self.total_resources,
            "successful_transfers": self.successful_transfers,
            "failed_transfers": self.failed_transfers,
            "platforms": self.platforms,
            "errors": self.errors,
        }


class OwnershipTransferService:
    """Moves ownership of a user's files to another user."""

    def __init__(
        self,
        tenant_id: str,
        storage: Storage,
        cipher,
        connector_factory: Callable[..., Any] = create_connector,
        connector_options: Optional[Dict[str, Any]] = None,
    ):
        self.tenant_id = tenant_id
        self.storage = storage
        self.cipher = cipher
        self.connector_factory = connector_factory
        self.connector_options = connector_options or {}

    async def transfer_all(self, from_user_id: str, to_user_id: str) -> TransferSummary:
        """Transfer everything ``from_user_id`` owns to ``to_user_id``.

        Args:
            from_user_id: Departing user
            to_user_id: New owner

        Returns:
            Summary across platforms
        """
        logger.info("ownership_transfer_started", from_user_id=from_user_id, to_user_id=to_user_id)

        results = [await self.transfer_google_drive(from_user_id, to_user_id)]

        summary = TransferSummary.from_results(results)
        logger.info(
            "ownership_transfer_finished",
            resources=summary.total_resources,
            failed_platforms=summary.failed_transfers,
        )
        return summary

    async def transfer_google_drive(self, from_user_id: str, to_user_id: str) -> TransferResult:
        from_user = get_user(self.storage, from_user_id) or {}
        to_user = get_user(self.storage, to_user_id) or {}
        if not from_user.get("email") or not to_user.get("email"):
            return TransferResult(success=False, platform=GOOGLE_DRIVE, errors=["User email not found"])

        idp = next(
            (
                p
                for p in list_identity_providers(self.storage, self.tenant_id, active_only=True)
                if p.get("type") == "google" and p.get("client_secret")
            ),
            None,
        )
        if idp is None:
            logger.info("drive_transfer_skipped", reason="no_google_idp")
            return TransferResult(
                success=True,
                platform=GOOGLE_DRIVE,
                errors=["No Google IdP configured"],
                details={"files_transferred": 0},
            )

        try:
            connector = self.connector_factory(
                idp, self.cipher, storage=self.storage, **self.connector_options
            )
            async with connector:
                outcome = await connector.transfer_file_ownership(from_user["email"], to_user["email"])
        except SaasGuardError as e:
            logger.error("drive_transfer_error", error=str(e))
            return TransferResult(success=False, platform=GOOGLE_DRIVE, errors=[str(e)])

        return TransferResult(
            success=True,
            platform=GOOGLE_DRIVE,
            resources_transferred=outcome["transferred"],
            errors=list(outcome["errors"]),
            details={
                "files_transferred": outcome["transferred"],
                "from_user": from_user["email"],
                "to_user": to_user["email"],
            },
        )
