"""Plan protocol — Plan parser.

Responsibilities:
  1. Accept raw input (str, bytes, dict, or a file path)
  2. Deserialise JSON or YAML
  3. Translate Compose-style ``services:`` documents into the native shape
  4. Validate the result against PlanSpec
  5. Return a fully-typed, immutable PlanSpec

The parser does NOT build the dependency graph — duplicate names, unknown
targets, cycles, and unsatisfiable conditions are the graph builder's job.

Native format::

    plan_id: web-stack
    units:
      - name: db
        health_check: {test: "pg_isready", interval: 2s}
      - name: api
        dependencies:
          - {target: db, condition: healthy}

Compose format::

    services:
      db:
        healthcheck: {test: ["CMD", "pg_isready"], interval: 2s}
      api:
        depends_on:
          db: {condition: service_healthy}
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from stackup.exceptions import PlanParseError, PlanValidationError
from stackup.logging import get_logger
from stackup.protocol.models import PlanSpec

_log = get_logger(__name__)


class PlanParser:
    """Stateless plan parser.

    Usage::

        parser = PlanParser()
        plan = parser.parse(raw_yaml_or_json)
        plan = parser.parse_file(Path("stack.yaml"))
    """

    def parse(self, raw: str | bytes | dict[str, Any]) -> PlanSpec:
        """Parse and validate *raw* into a :class:`PlanSpec`.

        Raises:
            PlanParseError: The document is malformed or not a mapping.
            PlanValidationError: Pydantic validation failed.
        """
        data = self._deserialise(raw)
        if "services" in data:
            data = self._from_compose(data)
        return self._validate_plan(data)

    def parse_file(self, path: Path) -> PlanSpec:
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PlanParseError(f"Cannot read plan file '{path}': {exc}") from exc
        data = self._deserialise(raw)
        if "services" in data:
            data = self._from_compose(data, default_plan_id=path.parent.name or None)
        return self._validate_plan(data)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _deserialise(self, raw: str | bytes | dict[str, Any]) -> dict[str, Any]:
        if isinstance(raw, dict):
            return raw

        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            # YAML is a superset of JSON; fall through for YAML documents.
            try:
                data = yaml.safe_load(raw)
            except yaml.YAMLError as exc:
                raise PlanParseError(
                    f"Invalid plan document: {exc}", raw_payload=raw[:500]
                ) from exc

        if not isinstance(data, dict):
            raise PlanParseError(
                f"Expected a mapping at the top level, got {type(data).__name__}.",
                raw_payload=str(raw)[:500],
            )
        return data

    def _validate_plan(self, data: dict[str, Any]) -> PlanSpec:
        try:
            return PlanSpec.model_validate(data)
        except ValidationError as exc:
            errors = exc.errors(include_url=False)
            messages = "; ".join(e.get("msg", "") for e in errors)
            raise PlanValidationError(
                f"Plan validation failed: {messages}",
                errors=errors,
            ) from exc

    def _from_compose(
        self, data: dict[str, Any], default_plan_id: str | None = None
    ) -> dict[str, Any]:
        services = data.get("services") or {}
        if not isinstance(services, dict):
            raise PlanParseError("'services' must be a mapping of service name to definition.")

        units: list[dict[str, Any]] = []
        for name, service in services.items():
            service = service or {}
            if not isinstance(service, dict):
                raise PlanParseError(f"Service '{name}' must be a mapping.")
            unit: dict[str, Any] = {
                "name": str(name),
                "dependencies": self._compose_depends_on(name, service.get("depends_on")),
            }
            healthcheck = service.get("healthcheck")
            if isinstance(healthcheck, dict) and not self._healthcheck_disabled(healthcheck):
                unit["health_check"] = self._compose_healthcheck(healthcheck)
            if "command" in service:
                unit["command"] = service["command"]
            if "allow_failure" in service:
                unit["allow_failure"] = service["allow_failure"]
            units.append(unit)

        plan: dict[str, Any] = {"units": units}
        plan_id = data.get("name") or default_plan_id
        if plan_id:
            plan["plan_id"] = str(plan_id)
        _log.debug("compose_document_translated", units=len(units))
        return plan

    @staticmethod
    def _compose_depends_on(name: str, depends_on: Any) -> list[dict[str, Any]]:
        if depends_on is None:
            return []
        # Short syntax: a list of service names, each implying service_started.
        if isinstance(depends_on, list):
            return [{"target": str(target)} for target in depends_on]
        if not isinstance(depends_on, dict):
            raise PlanParseError(f"Service '{name}': 'depends_on' must be a list or mapping.")
        deps: list[dict[str, Any]] = []
        for target, options in depends_on.items():
            options = options or {}
            dep: dict[str, Any] = {"target": str(target)}
            if "condition" in options:
                dep["condition"] = options["condition"]
            if "required" in options:
                dep["required"] = options["required"]
            deps.append(dep)
        return deps

    @staticmethod
    def _healthcheck_disabled(healthcheck: dict[str, Any]) -> bool:
        test = healthcheck.get("test")
        if isinstance(test, list) and test[:1] == ["NONE"]:
            return True
        return bool(healthcheck.get("disable", False))

    @staticmethod
    def _compose_healthcheck(healthcheck: dict[str, Any]) -> dict[str, Any]:
        test = healthcheck.get("test")
        # ["CMD", argv...] runs argv directly; ["CMD-SHELL", script] goes through sh.
        if isinstance(test, str):
            test = ["/bin/sh", "-c", test]
        elif isinstance(test, list) and test:
            if test[0] == "CMD":
                test = test[1:]
            elif test[0] == "CMD-SHELL":
                test = ["/bin/sh", "-c", " ".join(test[1:])]
        spec: dict[str, Any] = {"test": test}
        for key in ("interval", "timeout", "retries", "start_period"):
            if key in healthcheck:
                spec[key] = healthcheck[key]
        return spec
