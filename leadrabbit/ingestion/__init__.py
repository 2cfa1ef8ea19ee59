"""Ingestion package for LeadRabbit.

Contains configuration, schemas, and source adapters for lead ingestion
via 99acres (webhook + polling sync) and Facebook Lead Ads webhooks.
"""

from .common import AuthenticationError, IngestionError, InvalidEnvelope  # noqa: F401
from .schemas import IngestResult  # noqa: F401
