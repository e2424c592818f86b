# quickbase/client.py
import logging
from typing import Any, Dict, List, Optional, Union

from requests import Session
from requests.adapters import HTTPAdapter, Retry

from quickbase.config import VERSION, ClientConfig
from quickbase.errors import QuickBaseError, QuickBaseValidationError, load_json_object
from quickbase.executor import RequestExecutor
from quickbase.schemas import ApiAction, TempTokenState
from quickbase.throttle import Throttle
from quickbase.utils import compact

logger = logging.getLogger("quickbase")


class QuickBase:
    """
    Quick Base JSON API (v1) client.

    - One method per API operation; returns the decoded JSON body.
    - Every method takes `request_options`: extra `requests` keyword arguments
      (timeout, headers, params, verify, ...) layered over the defaults.
    - Temp tokens from get_temp_token() are kept (auto_consume_temp_tokens) and
      renewed on expiry (auto_renew_temp_tokens).

        qb = QuickBase(realm="www", user_token="xxxxxx_xxx_xxxxxxxxxxxxxxxxxxxxxxxxxx")
        qb.run_query(table_id="bqxxxxxxx", select=[3, 6], where="{'3'.GT.'0'}")
    """

    VERSION = VERSION

    def __init__(self, config: Optional[ClientConfig] = None, session: Optional[Session] = None, **options: Any):
        cfg = config or ClientConfig()
        self.settings = cfg.merged(options or {})

        self.session = session or Session()
        if self.settings.max_retries:
            self._mount_retries()

        self.throttle = Throttle(
            self.settings.connection_limit,
            self.settings.connection_limit_period,
            self.settings.error_on_connection_limit,
        )
        self.temp_token = TempTokenState(self.settings.temp_token)
        self.executor = RequestExecutor(
            self.settings,
            self.session,
            self.throttle,
            self.temp_token,
            lambda dbid: self.get_temp_token(dbid=dbid),
        )

        logger.debug("New instance realm=%s server=%s version=%s", self.settings.realm, self.settings.server, self.settings.version)

    def _mount_retries(self) -> None:
        retry = Retry(
            total=self.settings.max_retries,
            backoff_factor=0.6,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=None,
            raise_on_status=False,
        )
        self.session.mount("https://", HTTPAdapter(max_retries=retry))

    def __enter__(self) -> "QuickBase":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def _request(
        self,
        path: str,
        method: str = "GET",
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        request_options: Optional[Dict[str, Any]] = None,
        pass_through: bool = False,
    ) -> Any:
        action = ApiAction(path=path, method=method, params=params, body=body, request_options=request_options)
        return self.executor.execute(action, pass_through=pass_through)

    # ------------------------------------------------------------------ apps

    def create_app(
        self,
        *,
        name: str,
        description: str = "",
        assign_token: bool = False,
        variables: Optional[List[Dict[str, str]]] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Create an application. `variables` is a list of {"name": ..., "value": ...}."""
        data = {"name": name, "description": description, "assignToken": assign_token}
        if variables is not None:
            data["variables"] = variables
        return self._request("apps", "POST", body=data, request_options=request_options)

    def get_app(self, *, app_id: str, request_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request(f"apps/{app_id}", request_options=request_options)

    def update_app(
        self,
        *,
        app_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        variables: Optional[List[Dict[str, str]]] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        data = compact(name=name, description=description, variables=variables)
        return self._request(f"apps/{app_id}", "POST", body=data, request_options=request_options)

    def delete_app(self, *, app_id: str, name: str, request_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Delete an application. Quick Base requires the app name as confirmation."""
        return self._request(f"apps/{app_id}", "DELETE", body={"name": name}, request_options=request_options)

    # ---------------------------------------------------------------- tables

    def create_table(
        self,
        *,
        app_id: str,
        name: str,
        description: Optional[str] = None,
        icon_name: Optional[str] = None,
        singular_noun: Optional[str] = None,
        plural_noun: Optional[str] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        data = {"name": name}
        data.update(compact(
            description=description,
            iconName=icon_name,
            singularNoun=singular_noun,
            pluralNoun=plural_noun,
        ))
        return self._request("tables", "POST", params={"appId": app_id}, body=data, request_options=request_options)

    def get_table(self, *, app_id: str, table_id: str, request_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request(f"tables/{table_id}", params={"appId": app_id}, request_options=request_options)

    def get_app_tables(self, *, app_id: str, request_options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._request("tables", params={"appId": app_id}, request_options=request_options)

    def update_table(
        self,
        *,
        app_id: str,
        table_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        icon_name: Optional[str] = None,
        singular_noun: Optional[str] = None,
        plural_noun: Optional[str] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        data = compact(
            name=name,
            description=description,
            iconName=icon_name,
            singularNoun=singular_noun,
            pluralNoun=plural_noun,
        )
        return self._request(
            f"tables/{table_id}", "POST", params={"appId": app_id}, body=data, request_options=request_options
        )

    def delete_table(self, *, app_id: str, table_id: str, request_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request(f"tables/{table_id}", "DELETE", params={"appId": app_id}, request_options=request_options)

    # ---------------------------------------------------------------- fields

    def create_field(
        self,
        *,
        table_id: str,
        label: Optional[str] = None,
        field_type: Optional[str] = None,
        no_wrap: Optional[bool] = None,
        bold: Optional[bool] = None,
        appears_by_default: Optional[bool] = None,
        find_enabled: Optional[bool] = None,
        does_data_copy: Optional[bool] = None,
        field_help: Optional[str] = None,
        audited: Optional[bool] = None,
        properties: Optional[Dict[str, Any]] = None,
        permissions: Optional[List[Dict[str, Any]]] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Create a field. `field_type` is one of Quick Base's field type names
        (text, numeric, date, checkbox, ...); `properties` depend on the type.
        """
        data = compact(
            label=label,
            fieldType=field_type,
            noWrap=no_wrap,
            bold=bold,
            appearsByDefault=appears_by_default,
            findEnabled=find_enabled,
            doesDataCopy=does_data_copy,
            fieldHelp=field_help,
            audited=audited,
            properties=properties,
            permissions=permissions,
        )
        return self._request("fields", "POST", params={"tableId": table_id}, body=data, request_options=request_options)

    def get_field(self, *, table_id: str, field_id: int, request_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request(f"fields/{field_id}", params={"tableId": table_id}, request_options=request_options)

    def get_fields(
        self,
        *,
        table_id: str,
        include_field_perms: Optional[bool] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        params = {"tableId": table_id}
        params.update(compact(includeFieldPerms=include_field_perms))
        return self._request("fields", params=params, request_options=request_options)

    def update_field(
        self,
        *,
        table_id: str,
        field_id: int,
        label: Optional[str] = None,
        unique: Optional[bool] = None,
        required: Optional[bool] = None,
        no_wrap: Optional[bool] = None,
        bold: Optional[bool] = None,
        appears_by_default: Optional[bool] = None,
        add_to_forms: Optional[bool] = None,
        find_enabled: Optional[bool] = None,
        field_help: Optional[str] = None,
        properties: Optional[Dict[str, Any]] = None,
        permissions: Optional[List[Dict[str, Any]]] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        data = compact(
            label=label,
            unique=unique,
            required=required,
            noWrap=no_wrap,
            bold=bold,
            appearsByDefault=appears_by_default,
            addToForms=add_to_forms,
            findEnabled=find_enabled,
            fieldHelp=field_help,
            properties=properties,
            permissions=permissions,
        )
        return self._request(
            f"fields/{field_id}", "POST", params={"tableId": table_id}, body=data, request_options=request_options
        )

    def delete_fields(
        self,
        *,
        table_id: str,
        field_ids: List[int],
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Delete fields from a table.

        The API answers 200 even when nothing was deleted; that case is raised
        as a QuickBaseError built from the embedded `errors`.
        """
        results = self._request(
            "fields",
            "DELETE",
            params={"tableId": table_id},
            body={"fieldIds": list(field_ids)},
            request_options=request_options,
            pass_through=True,
        )
        response = results.body or {}

        errors = response.get("errors") or []
        if not response.get("deletedFieldIds") and errors:
            raise QuickBaseError(
                500, "Error executing deleteFields", " ".join(str(e) for e in errors), results.headers.get("qb-api-ray")
            )
        return response

    def get_fields_usage(
        self,
        *,
        table_id: str,
        skip: Optional[int] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        params = {"tableId": table_id}
        params.update(compact(skip=skip))
        return self._request("fields/usage", params=params, request_options=request_options)

    def get_field_usage(
        self, *, table_id: str, field_id: int, request_options: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        results = self._request(f"fields/usage/{field_id}", params={"tableId": table_id}, request_options=request_options)
        return results[0] if results else None

    # --------------------------------------------------------------- reports

    def get_report(self, *, table_id: str, report_id: int, request_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request(f"reports/{report_id}", params={"tableId": table_id}, request_options=request_options)

    def get_table_reports(self, *, table_id: str, request_options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._request("reports", params={"tableId": table_id}, request_options=request_options)

    def run_report(
        self,
        *,
        table_id: str,
        report_id: int,
        options: Optional[Dict[str, int]] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run a saved report. `options` may carry `skip` and `top` for paging."""
        options = options or {}
        params = {"tableId": table_id}
        params.update(compact(skip=options.get("skip"), top=options.get("top")))
        return self._request(f"reports/{report_id}/run", "POST", params=params, body={}, request_options=request_options)

    # --------------------------------------------------------------- records

    def run_query(
        self,
        *,
        table_id: str,
        where: Optional[str] = None,
        select: Optional[List[int]] = None,
        sort_by: Optional[List[Dict[str, Any]]] = None,
        group_by: Optional[List[Dict[str, Any]]] = None,
        options: Optional[Dict[str, Any]] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Query records.

            qb.run_query(
                table_id="bqxxxxxxx",
                where="{'3'.GT.'0'}",
                select=[3, 6, 7],
                sort_by=[{"fieldId": 3, "order": "ASC"}],
                options={"skip": 200, "top": 100},
            )
        """
        data = {"from": table_id}
        data.update(compact(where=where, select=select, sortBy=sort_by, groupBy=group_by, options=options))
        return self._request("records/query", "POST", body=data, request_options=request_options)

    def upsert_records(
        self,
        *,
        table_id: str,
        data: List[Dict[str, Any]],
        merge_field_id: Optional[int] = None,
        fields_to_return: Optional[List[int]] = None,
        request_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Insert or update records (matched on `merge_field_id` when given).

        A 200 whose metadata lists lineErrors and whose data is empty means
        nothing was written; that is raised as a QuickBaseError.
        """
        payload = {"to": table_id, "data": data}
        payload.update(compact(mergeFieldId=merge_field_id, fieldsToReturn=fields_to_return))

        results = self._request("records", "POST", body=payload, request_options=request_options, pass_through=True)
        response = results.body or {}

        line_errors = (response.get("metadata") or {}).get("lineErrors") or {}
        if line_errors and not response.get("data"):
            description = "\n".join(
                f"Line #{line}: {'. '.join(errors)}" for line, errors in line_errors.items()
            )
            raise QuickBaseError(500, "Error executing upsertRecords", description, results.headers.get("qb-api-ray"))

        return response

    def delete_records(self, *, table_id: str, where: str, request_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self._request("records", "DELETE", body={"from": table_id, "where": where}, request_options=request_options)

    # ------------------------------------------------------------------ auth

    def get_temp_token(self, *, dbid: str, request_options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Get a temporary token for one app or table dbid (valid ~5 minutes, only
        against that dbid). Stored for later calls when auto_consume_temp_tokens is on.
        """
        results = self._request(f"auth/temporary/{dbid}", request_options=request_options)

        if self.settings.auto_consume_temp_tokens:
            self.set_temp_token(results["temporaryAuthorization"], dbid)

        return results

    def set_temp_token(self, temp_token: str, dbid: Optional[str] = None) -> "QuickBase":
        self.temp_token.set(temp_token, dbid)
        return self

    # --------------------------------------------------------- serialization

    def to_json(self) -> Dict[str, Any]:
        """Plain dict of the client settings, including the temp token currently held."""
        data = self.settings.to_dict()
        data["temp_token"], _ = self.temp_token.snapshot()
        return data

    def load_json(self, data: Union[str, Dict[str, Any]]) -> "QuickBase":
        """Apply serialized settings on top of this client's settings."""
        data = _load_settings(data)
        merged = self.settings.merged(data)
        for name in ClientConfig.field_names():
            setattr(self.settings, name, getattr(merged, name))
        if "temp_token" in data:
            _, dbid = self.temp_token.snapshot()
            self.temp_token.set(self.settings.temp_token, dbid)
        if {"connection_limit", "connection_limit_period", "error_on_connection_limit"} & set(data):
            self.throttle = Throttle(
                self.settings.connection_limit,
                self.settings.connection_limit_period,
                self.settings.error_on_connection_limit,
            )
            self.executor.throttle = self.throttle
        if "max_retries" in data:
            self._mount_retries()
        return self

    @classmethod
    def from_json(cls, data: Union[str, Dict[str, Any]], session: Optional[Session] = None) -> "QuickBase":
        return cls(ClientConfig(), session=session, **_load_settings(data))


def _load_settings(data: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    data = load_json_object(data)
    unknown = set(data) - set(ClientConfig.field_names())
    if unknown:
        raise QuickBaseValidationError(f"Unknown Quick Base option(s): {', '.join(sorted(unknown))}")
    return data
