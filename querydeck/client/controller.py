import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from querydeck.client.store import StoreClient, StoreError
from querydeck.core.classifier import Classification, classify
from querydeck.core.parameters import load_parameters, reconcile_parameters
from querydeck.core.schemas import (
    ParameterType,
    QueryForm,
    QueryParameter,
    TestExecutionResult,
)
from querydeck.core.slugs import generate_slug
from querydeck.core.validation import ValidationErrors, validate_definition

# -----------------------------------------------------------------------------
# CONTROLLER MODULE - admin-side lifecycle of custom queries
# Purpose: own the list, selection, form and test state of one admin session
# and drive create / update / delete / toggle / test against the store
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

SLUG_COLLISION_MARKER = "slug already exists"
DELETE_CONFIRMATION = "Are you sure you want to delete this query?"


def _parse_number(value: str):
    try:
        return int(value)
    except ValueError:
        return float(value)


def coerce_test_params(
    parameters: Iterable[QueryParameter], raw_values: Mapping[str, Any]
) -> Dict[str, Any]:
    """
    Convert the values typed into the test panel to their declared types.

    number: parsed to int/float, empty input omitted, unparsable input sent
    as typed so the engine can report it. boolean: only the text "true" is
    true. date: passed through, empty input omitted. Anything else is sent
    as typed.
    """
    types = {p.name: p.type for p in parameters}
    coerced: Dict[str, Any] = {}

    for name, value in raw_values.items():
        kind = types.get(name, ParameterType.STRING)

        if kind == ParameterType.NUMBER:
            if value is None or value == "":
                continue
            if isinstance(value, str):
                try:
                    value = _parse_number(value.strip())
                except ValueError:
                    pass
        elif kind == ParameterType.BOOLEAN:
            if not isinstance(value, bool):
                value = value == "true"
        elif kind == ParameterType.DATE:
            if value is None or value == "":
                continue

        coerced[name] = value

    return coerced


def _is_slug_collision(error: StoreError) -> bool:
    return SLUG_COLLISION_MARKER in error.message.lower()


class QueryLifecycleController:
    """
    State holder behind the custom query admin screen.

    Mode is one of idle / creating / editing / testing. Each operation has
    its own busy flag (`loading`, `creating`, `updating`, `deleting`,
    `testing`, `toggling`): calling an operation while its own flag is set
    is a no-op, different operations may overlap.

    Failures never partially apply to `queries`: definition-management
    failures land in `error` (or in `validation_errors["slug"]` for a slug
    collision), test failures land in `test_error` only.

    Args:
        store: client for the query definition store.
        confirm: blocking yes/no gate asked before a destructive delete.

    Example:
        controller = QueryLifecycleController(StoreClient(), confirm=ask_user)
        await controller.fetch_queries()
        controller.start_create()
        controller.set_name("Daily Report")
        controller.set_sql("SELECT * FROM orders WHERE created_at > :start")
        await controller.create()
    """

    def __init__(self, store: StoreClient, confirm: Callable[[str], bool]):
        self.store = store
        self.confirm = confirm

        self.queries: List[Dict[str, Any]] = []
        self.selected_query: Optional[Dict[str, Any]] = None
        self.form = QueryForm()
        self.validation_errors: ValidationErrors = {}
        self.error: Optional[str] = None

        self.is_creating = False
        self.is_editing = False

        self.test_params: Dict[str, Any] = {}
        self.test_result: Optional[TestExecutionResult] = None
        self.test_error: Optional[str] = None

        # Busy flags, one per operation kind
        self.loading = False
        self.creating = False
        self.updating = False
        self.deleting = False
        self.testing = False
        self.toggling = False

        self._slug_edited = False

    @property
    def mode(self) -> str:
        if self.testing:
            return "testing"
        if self.is_creating:
            return "creating"
        if self.is_editing:
            return "editing"
        return "idle"

    @property
    def classification(self) -> Classification:
        """HTTP method and read-only flag the store will derive for the form SQL."""
        return classify(self.form.sql_query)

    # =========================
    # Form helpers
    # =========================
    def reset_form(self) -> None:
        self.form = QueryForm()
        self.validation_errors = {}
        self._slug_edited = False

    def load_query_to_form(self, query: Mapping[str, Any]) -> None:
        self.form = QueryForm(
            slug=query.get("slug") or "",
            name=query.get("name") or "",
            description=query.get("description") or "",
            sql_query=query.get("sql_query") or "",
            parameters=load_parameters(query.get("parameters")),
            cache_ttl=int(query.get("cache_ttl") or 0),
            is_enabled=bool(query.get("is_enabled", False)),
        )
        self.validation_errors = {}
        # An existing slug is never re-proposed from the name
        self._slug_edited = True

    def set_name(self, name: str) -> None:
        self.form.name = name
        if not self._slug_edited:
            self.form.slug = generate_slug(name)
        self.validation_errors.pop("name", None)

    def set_slug(self, slug: str) -> None:
        self.form.slug = slug
        self._slug_edited = True
        self.validation_errors.pop("slug", None)

    def set_sql(self, sql: str) -> None:
        self.form.sql_query = sql
        self.form.parameters = reconcile_parameters(sql, self.form.parameters)
        self.validation_errors.pop("sql_query", None)

    def update_parameter(self, index: int, **fields: Any) -> None:
        parameters = list(self.form.parameters)
        parameters[index] = parameters[index].model_copy(update=fields)
        self.form.parameters = parameters
        self.validation_errors.pop(f"parameter_{index}_name", None)

    def set_test_param(self, name: str, value: Any) -> None:
        self.test_params = {**self.test_params, name: value}

    def _apply_store_error(self, error: StoreError) -> None:
        if _is_slug_collision(error):
            # Keep the retry loop inside the form
            self.validation_errors = {**self.validation_errors, "slug": error.message}
        else:
            self.error = error.message

    # =========================
    # Mode transitions
    # =========================
    def start_create(self) -> None:
        self.is_creating = True
        self.is_editing = False
        self.selected_query = None
        self.error = None
        self.reset_form()

    def select_query(self, query: Mapping[str, Any]) -> None:
        self.selected_query = dict(query)
        self.is_editing = True
        self.is_creating = False
        self.load_query_to_form(query)
        self.test_params = {}
        self.test_result = None
        self.test_error = None

    def cancel(self) -> None:
        self.is_creating = False
        self.is_editing = False
        self.selected_query = None
        self.reset_form()

    # =========================
    # Store operations
    # =========================
    async def fetch_queries(self) -> None:
        if self.loading:
            return
        self.loading = True
        self.error = None
        try:
            await self._refresh()
        finally:
            self.loading = False

    async def _refresh(self) -> None:
        # Runs even while a plain fetch is in flight
        try:
            self.queries = await self.store.list_queries()
        except StoreError as error:
            logger.warning(f"Fetching custom queries failed: {error.message}")
            self.error = error.message

    async def create(self) -> Optional[Dict[str, Any]]:
        if self.creating:
            return None

        self.error = None
        self.validation_errors = validate_definition(self.form)
        if self.validation_errors:
            return None

        self.creating = True
        try:
            record = await self.store.create_query(self.form.to_payload())
        except StoreError as error:
            logger.warning(f"Creating custom query failed: {error.message}")
            self._apply_store_error(error)
            return None
        finally:
            self.creating = False

        self.queries = [*self.queries, record]
        self.is_creating = False
        self.reset_form()
        return record

    async def update(self) -> Optional[Dict[str, Any]]:
        if self.selected_query is None or self.updating:
            return None
        query_id = self.selected_query.get("id")
        if not query_id:
            return None

        self.error = None
        self.validation_errors = validate_definition(self.form)
        if self.validation_errors:
            return None

        self.updating = True
        try:
            record = await self.store.update_query(query_id, self.form.to_payload())
        except StoreError as error:
            logger.warning(f"Updating custom query {query_id} failed: {error.message}")
            self._apply_store_error(error)
            return None
        finally:
            self.updating = False

        self.queries = [record if q.get("id") == query_id else q for q in self.queries]
        self.selected_query = None
        self.is_editing = False
        self.reset_form()
        return record

    async def delete(self, query_id: str) -> bool:
        if self.deleting:
            return False
        if not self.confirm(DELETE_CONFIRMATION):
            return False

        self.deleting = True
        self.error = None
        try:
            await self.store.delete_query(query_id)
        except StoreError as error:
            logger.warning(f"Deleting custom query {query_id} failed: {error.message}")
            self.error = error.message
            return False
        finally:
            self.deleting = False

        self.queries = [q for q in self.queries if q.get("id") != query_id]
        if self.selected_query is not None and self.selected_query.get("id") == query_id:
            self.selected_query = None
            if self.is_editing:
                self.is_editing = False
                self.reset_form()
        return True

    async def toggle_enabled(self, query_id: str, enabled: bool) -> bool:
        """Flip `is_enabled` without full validation, then reload the list."""
        if self.toggling:
            return False

        self.toggling = True
        try:
            await self.store.patch_query(query_id, {"is_enabled": enabled})
        except StoreError as error:
            logger.warning(f"Toggling custom query {query_id} failed: {error.message}")
            self.error = error.message
            return False
        finally:
            self.toggling = False

        await self._refresh()
        return True

    async def run_test(self) -> Optional[TestExecutionResult]:
        if self.selected_query is None or self.testing:
            return None
        query_id = self.selected_query.get("id")
        if not query_id:
            return None

        self.testing = True
        self.test_result = None
        self.test_error = None
        try:
            parameters = load_parameters(self.selected_query.get("parameters"))
            body = await self.store.test_query(
                query_id,
                coerce_test_params(parameters, self.test_params),
            )
            self.test_result = TestExecutionResult.model_validate(body)
        except StoreError as error:
            self.test_error = error.message or "Failed to test query"
        except ValidationError:
            self.test_error = "Unexpected test response"
        finally:
            self.testing = False

        return self.test_result
