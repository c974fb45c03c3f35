"""
Attribute Store.

Typed key/value attributes for subjects and resources, plus environment
attributes derived from the request context. Values are persisted as
strings and parsed according to their definition when read. Expired
attribute instances are ignored.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Callable, Optional

from accessgate.config import EngineConfig
from accessgate.errors import NotFound, ValidationError
from accessgate.labels import SecurityLevel
from accessgate.models import (
    AccessContext,
    AttributeDefinition,
    AttributeType,
    ResourceAttribute,
    SubjectAttribute,
    ValueType,
    utcnow,
)
from accessgate.networks import NetworkDirectory
from accessgate.store import Store
from accessgate.timeutil import day_of_week, ensure_aware_utc, localize


logger = logging.getLogger(__name__)

_LEVELS = tuple(level.name for level in SecurityLevel)

DEFAULT_ATTRIBUTES: tuple[AttributeDefinition, ...] = (
    # Subject attributes
    AttributeDefinition(
        name="role",
        description="User role",
        attribute_type=AttributeType.SUBJECT,
        category="IDENTITY",
        value_type=ValueType.ENUM,
        allowed_values=(
            "SUPER_ADMIN", "ADMIN", "HR_MANAGER", "DEPARTMENT_HEAD",
            "SECURITY_OFFICER", "STAFF", "AUDITOR",
        ),
    ),
    AttributeDefinition(
        name="department",
        description="User department",
        attribute_type=AttributeType.SUBJECT,
        category="IDENTITY",
        value_type=ValueType.STRING,
    ),
    AttributeDefinition(
        name="clearance",
        description="Security clearance level",
        attribute_type=AttributeType.SUBJECT,
        category="SECURITY",
        value_type=ValueType.ENUM,
        allowed_values=_LEVELS,
    ),
    AttributeDefinition(
        name="employment_status",
        description="Employment status",
        attribute_type=AttributeType.SUBJECT,
        category="EMPLOYMENT",
        value_type=ValueType.ENUM,
        allowed_values=("ACTIVE", "INACTIVE", "SUSPENDED", "TERMINATED"),
    ),
    AttributeDefinition(
        name="contract_type",
        description="Contract type",
        attribute_type=AttributeType.SUBJECT,
        category="EMPLOYMENT",
        value_type=ValueType.ENUM,
        allowed_values=("FULL_TIME", "PART_TIME", "CONTRACTOR", "INTERN"),
    ),
    AttributeDefinition(
        name="training_completed",
        description="Training completion status",
        attribute_type=AttributeType.SUBJECT,
        category="EMPLOYMENT",
        value_type=ValueType.BOOLEAN,
    ),
    AttributeDefinition(
        name="security_certification_level",
        description="Security certification level",
        attribute_type=AttributeType.SUBJECT,
        category="SECURITY",
        value_type=ValueType.NUMBER,
    ),
    # Resource attributes
    AttributeDefinition(
        name="classification",
        description="Resource classification level",
        attribute_type=AttributeType.RESOURCE,
        category="CLASSIFICATION",
        value_type=ValueType.ENUM,
        allowed_values=_LEVELS,
    ),
    AttributeDefinition(
        name="owner_department",
        description="Owner department",
        attribute_type=AttributeType.RESOURCE,
        category="METADATA",
        value_type=ValueType.STRING,
    ),
    AttributeDefinition(
        name="creation_date",
        description="Resource creation date",
        attribute_type=AttributeType.RESOURCE,
        category="METADATA",
        value_type=ValueType.DATETIME,
    ),
    AttributeDefinition(
        name="sensitivity_score",
        description="Sensitivity score (0-100)",
        attribute_type=AttributeType.RESOURCE,
        category="METADATA",
        value_type=ValueType.NUMBER,
        min_value=0,
        max_value=100,
    ),
    AttributeDefinition(
        name="data_retention_period",
        description="Data retention period in days",
        attribute_type=AttributeType.RESOURCE,
        category="METADATA",
        value_type=ValueType.NUMBER,
    ),
)

_TRUE = ("true", "1")
_BOOLEAN = ("true", "false", "1", "0")


def serialize_value(value: Any) -> str:
    """String form used for storage."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def _parse_number(value: str) -> float:
    number = float(value)
    return int(number) if number.is_integer() else number


def parse_value(value: str, value_type: ValueType) -> Any:
    """Typed form used for evaluation."""
    if value_type == ValueType.NUMBER:
        try:
            return _parse_number(value)
        except ValueError:
            return value
    if value_type == ValueType.BOOLEAN:
        return value.lower() in _TRUE
    if value_type in (ValueType.DATE, ValueType.DATETIME):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    if value_type == ValueType.JSON:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def validate_value(value: str, definition: AttributeDefinition) -> None:
    """
    Check a serialized value against its definition.

    Raises:
        ValidationError: Type, range, enum or pattern violation
    """
    value_type = definition.value_type

    if value_type == ValueType.NUMBER:
        try:
            number = float(value)
        except ValueError:
            raise ValidationError(f"Value must be a number: {value}") from None
        if definition.min_value is not None and number < definition.min_value:
            raise ValidationError(f"Value must be >= {definition.min_value}")
        if definition.max_value is not None and number > definition.max_value:
            raise ValidationError(f"Value must be <= {definition.max_value}")

    elif value_type == ValueType.BOOLEAN:
        if value.lower() not in _BOOLEAN:
            raise ValidationError(f"Value must be a boolean: {value}")

    elif value_type in (ValueType.DATE, ValueType.DATETIME):
        try:
            datetime.fromisoformat(value)
        except ValueError:
            raise ValidationError(f"Value must be a valid date: {value}") from None

    elif value_type == ValueType.ENUM:
        if definition.allowed_values and value not in definition.allowed_values:
            raise ValidationError(f"Value must be one of: {', '.join(definition.allowed_values)}")

    elif value_type == ValueType.JSON:
        try:
            json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError(f"Value must be valid JSON: {value}") from None

    if definition.pattern and not re.search(definition.pattern, value):
        raise ValidationError(f"Value does not match required pattern: {definition.pattern}")


class AttributeStore:
    """
    Reads and writes typed attributes.

    Example:
        attrs = AttributeStore(store)
        attrs.initialize_default_attributes()
        attrs.set_subject_attribute("alice", "department", "Finance")

        resolved = attrs.resolve("alice", "document", "q3-report", AccessContext())
        resolved["subject"]["department"]  # "Finance"
    """

    def __init__(
        self,
        store: Store,
        config: Optional[EngineConfig] = None,
        networks: Optional[NetworkDirectory] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self.networks = networks or NetworkDirectory(store)
        self.clock = clock

    def define_attribute(self, definition: AttributeDefinition) -> AttributeDefinition:
        return self.store.save_attribute_definition(definition)

    def initialize_default_attributes(self) -> list[AttributeDefinition]:
        """Upsert the built-in attribute definitions."""
        saved = [self.store.save_attribute_definition(d) for d in DEFAULT_ATTRIBUTES]
        logger.info(f"Initialized {len(saved)} default attribute definitions")
        return saved

    def _definition(self, name: str) -> AttributeDefinition:
        definition = self.store.get_attribute_definition(name)
        if definition is None:
            raise NotFound(f"Attribute definition not found: {name}")
        return definition

    def set_subject_attribute(
        self,
        subject_id: str,
        name: str,
        value: Any,
        source: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> SubjectAttribute:
        """
        Validate and upsert a subject attribute.

        Raises:
            NotFound: No definition exists for `name`
            ValidationError: Value violates the definition
        """
        definition = self._definition(name)
        serialized = serialize_value(value)
        validate_value(serialized, definition)

        attribute = SubjectAttribute(
            subject_id=subject_id,
            name=name,
            value=serialized,
            source=source,
            expires_at=expires_at,
            updated_at=self.clock(),
        )
        return self.store.save_subject_attribute(attribute)

    def set_resource_attribute(
        self,
        resource_type: str,
        resource_id: str,
        name: str,
        value: Any,
        source: Optional[str] = None,
        calculated: bool = False,
        expires_at: Optional[datetime] = None,
    ) -> ResourceAttribute:
        """
        Validate and upsert a resource attribute.

        Raises:
            NotFound: Resource or definition does not exist
            ValidationError: Value violates the definition
        """
        resource = self.store.get_resource(resource_type, resource_id)
        if resource is None:
            raise NotFound(f"Resource not found: {resource_type}:{resource_id}")

        definition = self._definition(name)
        serialized = serialize_value(value)
        validate_value(serialized, definition)

        attribute = ResourceAttribute(
            resource_pk=resource.id,
            name=name,
            value=serialized,
            source=source,
            calculated=calculated,
            expires_at=expires_at,
            updated_at=self.clock(),
        )
        return self.store.save_resource_attribute(attribute)

    def _parsed(self, attributes) -> dict[str, Any]:
        now = self.clock()
        result = {}
        for attribute in attributes:
            if attribute.is_expired(now):
                continue
            definition = self.store.get_attribute_definition(attribute.name)
            value_type = definition.value_type if definition else ValueType.STRING
            result[attribute.name] = parse_value(attribute.value, value_type)
        return result

    def get_subject_attributes(self, subject_id: str) -> dict[str, Any]:
        return self._parsed(self.store.list_subject_attributes(subject_id))

    def get_resource_attributes(self, resource_type: str, resource_id: str) -> dict[str, Any]:
        resource = self.store.get_resource(resource_type, resource_id)
        if resource is None:
            return {}
        return self._parsed(self.store.list_resource_attributes(resource.id))

    def get_environment_attributes(self, context: Optional[AccessContext] = None) -> dict[str, Any]:
        """Derive time, network and threat attributes from the request context."""
        context = context or AccessContext()
        now = localize(ensure_aware_utc(context.current_time or self.clock()), self.config.default_timezone)
        start, end = self.config.business_hours

        attributes: dict[str, Any] = {
            "current_time": now.isoformat(),
            "hour": now.hour,
            "day_of_week": day_of_week(now),
            "day_of_month": now.day,
            "month": now.month,
            "year": now.year,
            "is_weekend": day_of_week(now) in (0, 6),
            "is_business_hours": start <= now.hour < end,
        }

        if context.network_security_level:
            attributes["network_security_level"] = context.network_security_level

        if context.threat_intelligence_score is not None:
            attributes["threat_intelligence_score"] = context.threat_intelligence_score

        if context.system_maintenance_status:
            attributes["system_maintenance_status"] = context.system_maintenance_status
            attributes["is_maintenance_mode"] = context.system_maintenance_status == "MAINTENANCE"

        if context.ip_address:
            attributes["is_office_network"] = self.networks.is_office_network(context.ip_address)
            attributes["is_vpn"] = self.networks.is_vpn(context.ip_address)

        return attributes

    def resolve(
        self,
        subject_id: str,
        resource_type: str,
        resource_id: str,
        context: Optional[AccessContext] = None,
    ) -> dict[str, dict[str, Any]]:
        """Namespaced attribute map consumed by the ABAC evaluator."""
        return {
            "subject": self.get_subject_attributes(subject_id),
            "resource": self.get_resource_attributes(resource_type, resource_id),
            "environment": self.get_environment_attributes(context),
        }
