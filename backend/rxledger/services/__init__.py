"""
Backend services for RxLedger.

- ContentStoreClient: encrypted JSON documents on IPFS
- LedgerGateway: registration + prescription contract binding
- EntityIndexService / EntityRegistrationService: entity mirror and registration
- PrescriptionIndexService / StatusAuditService: prescription mirror and timeline
- PrescriptionLifecycleService: the workflow orchestrator
- SettingsService: configuration distribution
"""

from .content_store import ContentStoreClient, get_content_store
from .ledger_gateway import LedgerGateway, LedgerPrescription, get_ledger_gateway
from .caller_context import CallerContext, resolve_caller
from .entity_index import EntityIndexService, get_entity_index
from .registration import EntityRegistrationService, get_registration_service
from .prescription_index import (
    DivergenceRegistry,
    PrescriptionFilter,
    PrescriptionIndexService,
    PrescriptionRow,
)
from .status_audit import StatusAuditService
from .prescription_lifecycle import PrescriptionLifecycleService, PrescriptionView, get_lifecycle_service
from .settings import SettingsService, get_settings_service

__all__ = [
    "ContentStoreClient",
    "get_content_store",
    "LedgerGateway",
    "LedgerPrescription",
    "get_ledger_gateway",
    "CallerContext",
    "resolve_caller",
    "EntityIndexService",
    "get_entity_index",
    "EntityRegistrationService",
    "get_registration_service",
    "DivergenceRegistry",
    "PrescriptionFilter",
    "PrescriptionIndexService",
    "PrescriptionRow",
    "StatusAuditService",
    "PrescriptionLifecycleService",
    "PrescriptionView",
    "get_lifecycle_service",
    "SettingsService",
    "get_settings_service",
]
