"""Request and response validation for one operation.

``handle`` runs the fixed sequence::

    headers -> query -> path params -> cookies -> body -> handler
    -> response body -> response headers

Request failures answer 400, response failures answer 500. With detailed
errors on, the payload is ``{"error": "<what> validation failed", "details":
[{path, keyword, message}]}``; otherwise a generic message is returned.
Response failures are always logged with the route and method.
"""

import functools
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from auto_openapi.config import ValidationDefaults
from auto_openapi.operations.models import (
    OperationDescriptor,
    ParameterLocation,
    ResponseDescriptor,
    ValidationFlags,
    resolve_flags,
)

from .http import Handler, HttpError, RawRequest, RawResponse, json_response
from .validator import compile_validator, validate_instance, validate_values

logger = logging.getLogger(__name__)

GENERIC_REQUEST_ERROR = "Invalid request data"
GENERIC_RESPONSE_ERROR = "Internal server error"

# empty or undecodable response body; body checks are skipped
_NO_BODY = object()

REQUEST_STAGES = (
    (ParameterLocation.HEADER, "headers", "Headers"),
    (ParameterLocation.QUERY, "query", "Query parameters"),
    (ParameterLocation.PATH, "path_params", "Path parameters"),
    (ParameterLocation.COOKIE, "cookies", "Cookies"),
)


@dataclass
class ValidatedInputs:
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    path_params: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    body: Any = None


class ValidationError(Exception):
    http_status = 400

    def __init__(self, payload: dict, http_status: int | None = None):
        super().__init__(payload.get("error", "Validation failed"))
        self.payload = payload
        if http_status is not None:
            self.http_status = http_status

    def to_response(self) -> RawResponse:
        return json_response(self.payload, status=self.http_status)


class RequestValidationError(ValidationError):
    http_status = 400


class ResponseValidationError(ValidationError):
    http_status = 500


def _is_json(content_type: str) -> bool:
    return "application/json" in content_type.lower()


def status_key(responses: dict[str, ResponseDescriptor], status: int) -> str | None:
    """Exact status, then its ``NXX`` class, then ``default``."""
    for key in (str(status), f"{status // 100}XX", "default"):
        if key in responses:
            return key
    return None


class ValidationOrchestrator:
    """Validates traffic for one operation against its merged descriptor.

    Validators are compiled once; no per-request state is kept on the
    instance, so one orchestrator can serve concurrent requests.
    """

    def __init__(
        self,
        descriptor: OperationDescriptor,
        defaults: ValidationDefaults | None = None,
        route_id: str | None = None,
        method: str | None = None,
    ):
        self.descriptor = descriptor
        self.defaults = defaults if defaults is not None else ValidationDefaults.from_env()
        self.route_id = route_id
        self.method = method.upper() if method else None

        self._parameters = {}
        for location, _, _ in REQUEST_STAGES:
            params = descriptor.parameters_in(location)
            # request headers are lowercased
            key = str.lower if location is ParameterLocation.HEADER else str
            self._parameters[location] = (
                {key(p.name): p.schema_node for p in params},
                {key(p.name) for p in params if p.required},
            )
        body = descriptor.request_body
        self._body_validator = compile_validator(body.schema_node) if body is not None else None
        self._response_validators = {
            status: compile_validator(r.body_schema)
            for status, r in descriptor.responses.items()
            if r.body_schema is not None
        }

    # flags

    def _request_flags(self, location: ParameterLocation, target: str) -> ValidationFlags:
        return resolve_flags(
            self.descriptor.parameter_flags.get(location),
            self.descriptor.validation_flags,
            self.defaults.flags_for("request", target),
        )

    def _body_flags(self) -> ValidationFlags:
        body = self.descriptor.request_body
        return resolve_flags(
            body.validation_flags if body else None,
            self.descriptor.validation_flags,
            self.defaults.flags_for("request", "body"),
        )

    def _response_flags(self, response: ResponseDescriptor, header: str | None = None) -> ValidationFlags:
        field_flags = response.validation_flags
        target = "body"
        if header is not None:
            target = "cookies" if header.lower() == "set-cookie" else "headers"
            header_flags = response.header_flags.get(header)
            field_flags = header_flags.or_else(field_flags) if header_flags else field_flags
        return resolve_flags(field_flags, self.descriptor.validation_flags, self.defaults.flags_for("response", target))

    # request

    async def validate_request(self, request: RawRequest) -> ValidatedInputs:
        """Validate every request part in order; raises RequestValidationError on the first failure."""
        inputs = ValidatedInputs(
            headers=dict(request.headers),
            query=request.query,
            path_params=dict(request.path_params),
            cookies=dict(request.cookies or {}),
        )
        for location, target, label in REQUEST_STAGES:
            schemas, required = self._parameters[location]
            if not schemas:
                continue
            flags = self._request_flags(location, target)
            if flags.skip:
                continue
            issues = validate_values(getattr(inputs, target), schemas, required)
            if issues:
                raise self._request_error(label, issues, flags)

        if self._body_validator is not None:
            flags = self._body_flags()
            if not flags.skip and _is_json(request.content_type):
                raw = await request.body.clone().read()
                if not raw:
                    if self.descriptor.request_body.required:
                        issue = {"path": "root", "keyword": "required", "message": "Request body is required"}
                        raise self._request_error("Request body", [issue], flags)
                else:
                    try:
                        inputs.body = json.loads(raw)
                    except ValueError as e:
                        issue = {"path": "root", "keyword": "json", "message": f"Malformed JSON: {e}"}
                        raise self._request_error("Request body", [issue], flags) from e
                    issues = validate_instance(inputs.body, self._body_validator)
                    if issues:
                        raise self._request_error("Request body", issues, flags)

        request.validated = inputs
        return inputs

    def _request_error(self, label: str, issues: list[dict], flags: ValidationFlags) -> RequestValidationError:
        logger.debug("%s validation failed for %s %s: %s", label, self.route_id, self.method, issues)
        if flags.detailed_error:
            return RequestValidationError({"error": f"{label} validation failed", "details": issues})
        return RequestValidationError({"error": GENERIC_REQUEST_ERROR})

    # response

    async def validate_response(self, response: RawResponse) -> None:
        """Validate a handler's response; raises ResponseValidationError."""
        key = status_key(self.descriptor.responses, response.status)
        if key is None:
            return

        descriptor = self.descriptor.responses[key]
        validator = self._response_validators.get(key)
        flags = self._response_flags(descriptor)
        if validator is not None and not flags.skip and _is_json(response.content_type):
            raw = await response.body.clone().read()
            try:
                data = json.loads(raw) if raw.strip() else _NO_BODY
            except ValueError as e:
                logger.warning(
                    "Response body for %s %s is not JSON, skipping body validation: %s",
                    self.method,
                    self.route_id,
                    e,
                    extra={"route": self.route_id, "method": self.method, "status": response.status},
                )
                data = _NO_BODY
            if data is not _NO_BODY:
                issues = validate_instance(data, validator)
                if issues:
                    raise self._response_error("Response body", response.status, issues, flags)

        for name, node in descriptor.header_schemas.items():
            value = response.headers.get(name.lower())
            if value is None:
                continue
            header_flags = self._response_flags(descriptor, header=name)
            if header_flags.skip:
                continue
            issues = validate_values({name: value}, {name: node}, set())
            if issues:
                raise self._response_error(f"Response header '{name}'", response.status, issues, header_flags)

    async def validate_http_error(self, exc: HttpError) -> RawResponse:
        """Turn a raised HttpError into a response, validating its body.

        Re-raises ``exc`` when the operation declares no schema for its status.
        """
        key = status_key(self.descriptor.responses, exc.status)
        validator = self._response_validators.get(key) if key else None
        if validator is None:
            raise exc

        descriptor = self.descriptor.responses[key]
        flags = self._response_flags(descriptor)
        if not flags.skip:
            issues = validate_instance(exc.body, validator)
            if issues:
                return self._response_error("Response body", exc.status, issues, flags).to_response()
        return json_response(exc.body, status=exc.status)

    def _response_error(
        self, label: str, status: int, issues: list[dict], flags: ValidationFlags
    ) -> ResponseValidationError:
        logger.error(
            "%s validation failed for %s %s",
            label,
            self.method,
            self.route_id,
            extra={"route": self.route_id, "method": self.method, "status": status, "details": issues},
        )
        if flags.detailed_error:
            return ResponseValidationError({"error": f"{label} validation failed", "details": issues})
        return ResponseValidationError({"error": GENERIC_RESPONSE_ERROR})

    # full cycle

    async def handle(self, request: RawRequest, handler: Handler) -> RawResponse:
        """Validate, call the handler, validate its answer. Always returns a response."""
        try:
            await self.validate_request(request)
        except RequestValidationError as e:
            return e.to_response()

        try:
            response = await handler(request)
        except HttpError as exc:
            try:
                return await self.validate_http_error(exc)
            except HttpError:
                return json_response(exc.body, status=exc.status)

        try:
            await self.validate_response(response)
        except ResponseValidationError as e:
            return e.to_response()
        return response

    def wrap(self, handler: Handler) -> Handler:
        """Decorator form of ``handle``."""

        @functools.wraps(handler)
        async def wrapper(request: RawRequest) -> RawResponse:
            return await self.handle(request, handler)

        return wrapper
