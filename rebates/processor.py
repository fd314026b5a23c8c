"""
Rebate Service - Request Orchestrator

Dispatches an `action` with its parameters to the matching operation and maps
the error taxonomy onto status codes.
"""

import logging
from typing import Any, Dict, Tuple

from .database import Database
from .errors import RebateError, ValidationError
from .models import LedgerKey
from .operations import (
    AgencyBindingCoordinator,
    AuditLedger,
    ComparisonEngine,
    CustomerOverrideManager,
    IndependentRateSetter,
    RateLibraryManager,
    RateResolver,
)
from .output import ResponseBuilder
from .store import (
    AgencyDirectory,
    CustomerDirectory,
    CustomerTalentRelationStore,
    RateLibraryImportStore,
    RebateConfigStore,
    TalentDirectory,
)
from .validators import RequestValidator

logger = logging.getLogger(__name__)


class RebateService:
    """
    Main entry point for rebate requests.

    Components are wired once per database and reused across requests; none
    of them keeps request state.
    """

    def __init__(self, db: Database):
        self.db = db

        # Directories over the shared database
        self.talents = TalentDirectory(db)
        self.agencies = AgencyDirectory(db)
        self.customers = CustomerDirectory(db)
        self.relations = CustomerTalentRelationStore(db)
        self.library = RateLibraryImportStore(db)

        # Operations
        self.validator = RequestValidator()
        self.resolver = RateResolver()
        self.ledger = AuditLedger(RebateConfigStore(db))
        self.binding = AgencyBindingCoordinator(self.talents, self.agencies, self.ledger)
        self.independent = IndependentRateSetter(self.talents, self.ledger)
        self.overrides = CustomerOverrideManager(
            self.customers, self.relations, self.talents, self.ledger, self.resolver
        )
        self.comparison = ComparisonEngine(self.talents, self.agencies, self.library, self.resolver)
        self.library_manager = RateLibraryManager(self.library)
        self.output = ResponseBuilder()

        self.actions = {
            "matchTalents": self._match_talents,
            "bindAgency": self._bind_agency,
            "bindAgencyByName": self._bind_agency_by_name,
            "unbindAgency": self._unbind_agency,
            "syncAgencyRebate": self._sync_agency_rebate,
            "setIndependentRebate": self._set_independent_rebate,
            "getRebateHistory": self._get_rebate_history,
            "getCustomerRebate": self._get_customer_rebate,
            "updateCustomerRebate": self._update_customer_rebate,
            "batchUpdateCustomerRebate": self._batch_update_customer_rebate,
            "compare": self._compare,
            "importRateLibrary": self._import_rate_library,
            "listLibraryVersions": self._list_library_versions,
            "setDefaultLibraryVersion": self._set_default_library_version,
            "deleteLibraryVersion": self._delete_library_version,
        }

    def handle(self, action: str | None, params: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        """
        Run one action and return (status_code, body).

        400: request-shape validation, 404: missing entity, 500: anything else.
        Unexpected errors are logged with traceback and answered generically.
        """
        try:
            data = self.dispatch(action, params)
            return 200, self.output.success(data)

        except RebateError as e:
            log = logger.error if e.status_code >= 500 else logger.warning
            log(f"{action} failed with {e.status_code}: {e}")
            return e.status_code, self.output.error(str(e))

        except Exception as e:
            logger.error(f"Unexpected error in {action}: {e}", exc_info=True)
            return 500, self.output.error("An unexpected error occurred during processing")

    def dispatch(self, action: str | None, params: Dict[str, Any]) -> Any:
        if not action:
            raise ValidationError("Missing required parameter: action")
        handler = self.actions.get(action)
        if handler is None:
            raise ValidationError(f"Unsupported action: {action}. Supported: {', '.join(self.actions)}")
        logger.info(f"Processing action: {action}")
        return handler(params)

    # -------------------------------------------------------------------------
    # Parameter mapping
    # -------------------------------------------------------------------------

    def _platform(self, params: dict) -> str:
        return self.validator.validate_platform(params.get("platform"))

    def _operator(self, params: dict) -> str:
        return params.get("createdBy") or params.get("updatedBy") or "system"

    def _overwrite(self, params: dict) -> bool:
        return self.validator.parse_bool(params.get("overwriteExisting"), "overwriteExisting", default=False)

    def _match_talents(self, params: dict):
        return self.binding.match_talents(self._platform(params), params.get("talents"))

    def _bind_agency(self, params: dict):
        return self.binding.bind_by_id(
            self._platform(params),
            params.get("agencyId"),
            params.get("talents"),
            overwrite_existing=self._overwrite(params),
            created_by=self._operator(params),
        )

    def _bind_agency_by_name(self, params: dict):
        return self.binding.bind_by_name(
            self._platform(params),
            params.get("talents"),
            overwrite_existing=self._overwrite(params),
            created_by=self._operator(params),
        )

    def _unbind_agency(self, params: dict):
        return self.binding.unbind(
            self._platform(params),
            params.get("talents"),
            new_rebate_rate=params.get("newRebateRate"),
            created_by=self._operator(params),
        )

    def _sync_agency_rebate(self, params: dict):
        return self.binding.sync_agency_rebate(
            self._platform(params), params.get("oneId"), created_by=self._operator(params)
        )

    def _set_independent_rebate(self, params: dict):
        return self.independent.set_independent(
            self._platform(params), params.get("talents"), created_by=self._operator(params)
        )

    def _get_rebate_history(self, params: dict):
        platform = self._platform(params)
        one_id = self.validator.require(params, "oneId")
        limit = self.validator.parse_int(params.get("limit"), "limit", AuditLedger.DEFAULT_HISTORY_LIMIT)
        offset = self.validator.parse_int(params.get("offset"), "offset", 0)
        history = self.ledger.history(LedgerKey.for_talent(one_id, platform), limit=limit, offset=offset)
        return {"oneId": one_id, "platform": platform, **history}

    def _get_customer_rebate(self, params: dict):
        return self.overrides.get_customer_rebate(
            params.get("customerId"), params.get("talentOneId"), self._platform(params)
        )

    def _update_customer_rebate(self, params: dict):
        return self.overrides.update_customer_rebate(
            params.get("customerId"),
            params.get("talentOneId"),
            self._platform(params),
            params.get("enabled"),
            rate=params.get("rate"),
            notes=params.get("notes"),
            updated_by=self._operator(params),
        )

    def _batch_update_customer_rebate(self, params: dict):
        return self.overrides.batch_update_customer_rebate(
            params.get("customerId"),
            self._platform(params),
            params.get("talents"),
            updated_by=self._operator(params),
        )

    def _compare(self, params: dict):
        return self.comparison.compare(self._platform(params), params.get("importId"))

    def _import_rate_library(self, params: dict):
        return self.library_manager.import_records(
            params.get("records"), params.get("fileName"), params.get("note")
        )

    def _list_library_versions(self, params: dict):
        return self.library_manager.list_versions()

    def _set_default_library_version(self, params: dict):
        return self.library_manager.set_default_version(params.get("importId"))

    def _delete_library_version(self, params: dict):
        return self.library_manager.delete_version(params.get("importId"))
