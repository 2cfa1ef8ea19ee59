import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IngestResult(BaseModel):
    """Outcome of one ingest call (webhook payload or sync window)."""

    leads_processed: int = Field(default=0, description="New leads inserted.")
    duplicates: int = Field(default=0, description="Entries already present (same source + query id).")
    skipped: int = Field(default=0, description="Malformed entries that were logged and skipped.")
    account_active: bool = Field(
        default=True,
        description="False when the tenant has no active integration account for the source.",
    )

    def merge(self, other: "IngestResult") -> "IngestResult":
        return IngestResult(
            leads_processed=self.leads_processed + other.leads_processed,
            duplicates=self.duplicates + other.duplicates,
            skipped=self.skipped + other.skipped,
            account_active=self.account_active or other.account_active,
        )


class WebhookResponse(BaseModel):
    """Body returned to webhook callers."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    leads_processed: int = Field(default=0, alias="leadsProcessed")
    message: str = ""


class SyncResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    leads_synced: int = Field(default=0, alias="leadsSynced")
    accounts_synced: int = Field(default=0, alias="accountsSynced")
    failed_accounts: List[int] = Field(default_factory=list, alias="failedAccounts")


class IntegrationAccountResponse(BaseModel):
    """Integration account as shown to admins; the credential is never returned."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    source: str
    username: str
    is_active: bool = Field(alias="isActive")
    last_sync: Optional[datetime.datetime] = Field(default=None, alias="lastSync")
    created_at: datetime.datetime = Field(alias="createdAt")
    total_leads: int = Field(default=0, alias="totalLeads")


class AccountActionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: int = Field(alias="accountId")
    action: str = Field(description="'enable' or 'disable'.")


class AccountDeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: int = Field(alias="accountId")
