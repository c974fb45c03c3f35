"""
Contextual Rule Evaluator (RuBAC).

Three predicate families over the request context:
- Time: emergency override, day of week, working hours (start inclusive,
  end exclusive) in the rule's timezone, optional holiday exclusion
- Location: emergency override, IP allow-lists, VPN, office network,
  blocked then allowed countries
- Device: emergency override, blocked ids, company management, OS and
  browser identity and minimum versions, anti-malware, encrypted storage,
  minimum trust level

Composite rules AND their nested rules and stop at the first failure.
Missing or disabled rules fail open; rules outside their validity window
deny.
"""

import logging
from datetime import date, datetime
from typing import Any, Callable, Iterable, Optional

from accessgate.config import EngineConfig
from accessgate.errors import PolicyMisconfiguration
from accessgate.models import (
    AccessContext,
    AccessPolicy,
    AccessRule,
    CheckResult,
    DeviceInfo,
    Holiday,
    HolidayType,
    PolicyType,
    RuleType,
    TrustLevel,
    new_id,
    utcnow,
)
from accessgate.networks import NetworkDirectory, ip_in_any
from accessgate.store import Store
from accessgate.timeutil import DAY_NAMES, day_of_week, ensure_aware_utc, localize, parse_hhmm


logger = logging.getLogger(__name__)


def compare_versions(version: str, minimum: str) -> bool:
    """True if dotted `version` >= `minimum`; missing parts count as 0."""

    def parts(v: str) -> list[int]:
        result = []
        for piece in str(v).split("."):
            digits = "".join(ch for ch in piece if ch.isdigit())
            result.append(int(digits) if digits else 0)
        return result

    left, right = parts(version), parts(minimum)
    width = max(len(left), len(right))
    left += [0] * (width - len(left))
    right += [0] * (width - len(right))
    return left >= right


def evaluate_time_rule(
    config: dict,
    current_time: datetime,
    default_timezone: str = "UTC",
) -> CheckResult:
    """Day-of-week and working-hours check. Holidays are checked by the caller."""
    if config.get("emergency_override"):
        return CheckResult.allow("Emergency override")

    local = localize(current_time, config.get("timezone") or default_timezone)
    weekday = day_of_week(local)

    days = config.get("days_of_week")
    if days and weekday not in days:
        return CheckResult.deny(f"Access not allowed on {DAY_NAMES[weekday]}", violation="TIME_WINDOW")

    hours = config.get("working_hours")
    if hours:
        start = parse_hhmm(hours.get("start", "00:00"))
        end = parse_hhmm(hours.get("end", "24:00"))
        minutes = local.hour * 60 + local.minute
        if minutes < start or minutes >= end:
            return CheckResult.deny(
                f"Access only allowed between {hours.get('start')} and {hours.get('end')}",
                violation="TIME_WINDOW",
            )

    return CheckResult.allow()


def _trust_level(value: Any) -> TrustLevel:
    if isinstance(value, TrustLevel):
        return value
    try:
        return TrustLevel[str(value).upper()]
    except KeyError:
        raise PolicyMisconfiguration(f"Unknown trust level: {value}") from None


class RuleEvaluator:
    """
    Loads access rules from the store and evaluates them against a
    request context.

    Example:
        rules = RuleEvaluator(store)
        rule = rules.create_rule(RuleType.TIME_BASED, {
            "working_hours": {"start": "09:00", "end": "17:00"},
            "days_of_week": [1, 2, 3, 4, 5],
        })
        result = rules.evaluate_access_rule(rule.id, AccessContext(current_time=now))
    """

    def __init__(
        self,
        store: Store,
        config: Optional[EngineConfig] = None,
        networks: Optional[NetworkDirectory] = None,
        policies=None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the evaluator.

        Args:
            store: Repository holding rules, devices, allow-lists and holidays
            config: Engine configuration (default timezone)
            networks: Allow-list lookups; built from the store by default
            policies: PolicyEvaluator used for ABAC-typed rules
            clock: Source of the current time
        """
        self.store = store
        self.config = config or EngineConfig()
        self.networks = networks or NetworkDirectory(store)
        self.policies = policies
        self.clock = clock

    # Rule and policy management

    def create_rule(
        self,
        rule_type: RuleType | str,
        config: dict,
        name: str = "",
        enabled: bool = True,
        valid_from: Optional[datetime] = None,
        valid_until: Optional[datetime] = None,
        rule_id: Optional[str] = None,
    ) -> AccessRule:
        rule = AccessRule(
            id=rule_id or new_id(),
            name=name,
            rule_type=RuleType(rule_type) if isinstance(rule_type, str) else rule_type,
            config=config,
            enabled=enabled,
            valid_from=valid_from,
            valid_until=valid_until,
        )
        return self.store.save_rule(rule)

    def attach_rule(
        self,
        rule_id: str,
        resource: str,
        action: str,
        priority: int = 0,
        name: str = "",
        enabled: bool = True,
    ) -> AccessPolicy:
        """Bind a rule to a resource type and action."""
        policy = AccessPolicy(
            id=new_id(),
            name=name,
            resource=resource,
            action=action,
            policy_type=PolicyType.RUBAC,
            priority=priority,
            enabled=enabled,
            rule_id=rule_id,
        )
        return self.store.save_policy(policy)

    # Holidays

    def add_holiday(
        self,
        name: str,
        start_date: date,
        end_date: Optional[date] = None,
        holiday_type: HolidayType = HolidayType.PUBLIC_HOLIDAY,
    ) -> Holiday:
        holiday = Holiday(
            name=name,
            start_date=start_date,
            end_date=end_date or start_date,
            holiday_type=holiday_type,
        )
        return self.store.save_holiday(holiday)

    def is_holiday(
        self,
        day: Optional[date | datetime] = None,
        exclude_types: Iterable[HolidayType] = (),
    ) -> bool:
        """True if any scheduled holiday, other than `exclude_types`, covers `day`."""
        if day is None:
            day = self.clock()
        if isinstance(day, datetime):
            day = localize(day, self.config.default_timezone).date()
        excluded = set(exclude_types)
        return any(
            h.covers(day) for h in self.store.list_holidays()
            if h.holiday_type not in excluded
        )

    # Predicate families

    def evaluate_time_rule(self, config: dict, context: AccessContext) -> CheckResult:
        now = ensure_aware_utc(context.current_time or self.clock())
        result = evaluate_time_rule(config, now, self.config.default_timezone)
        if not result.allowed or config.get("emergency_override"):
            return result

        if config.get("exclude_holidays"):
            local_day = localize(now, config.get("timezone") or self.config.default_timezone).date()
            if self.is_holiday(local_day):
                return CheckResult.deny("Access not allowed on holidays", violation="TIME_WINDOW")

        return result

    def evaluate_location_rule(self, config: dict, context: AccessContext) -> CheckResult:
        if config.get("emergency_override"):
            return CheckResult.allow("Emergency override")

        ip = context.ip_address

        allow_list_ids = config.get("ip_allow_list_ids")
        allow_list = config.get("ip_allow_list")
        if allow_list_ids:
            if not self.networks.in_allow_lists(ip, allow_list_ids):
                return CheckResult.deny("IP address not in allow-list", violation="LOCATION")
        elif allow_list:
            if not ip_in_any(ip, allow_list):
                return CheckResult.deny("IP address not in allow-list", violation="LOCATION")

        if config.get("require_vpn") and not self.networks.is_vpn(ip):
            return CheckResult.deny("VPN connection required", violation="LOCATION")

        if config.get("require_office_network") and not self.networks.is_office_network(ip):
            return CheckResult.deny("Office network connection required", violation="LOCATION")

        if context.country:
            country = context.country.upper()
            blocked = {c.upper() for c in config.get("blocked_countries") or []}
            allowed = {c.upper() for c in config.get("allowed_countries") or []}
            if country in blocked:
                return CheckResult.deny(f"Access blocked from {context.country}", violation="LOCATION")
            if allowed and country not in allowed:
                return CheckResult.deny(f"Access not allowed from {context.country}", violation="LOCATION")

        return CheckResult.allow()

    def evaluate_device_rule(self, config: dict, context: AccessContext) -> CheckResult:
        if config.get("emergency_override"):
            return CheckResult.allow("Emergency override")

        device_id = context.device_id
        profile = self.store.get_device(device_id) if device_id else None
        info = context.device_info or DeviceInfo()

        if device_id and device_id in (config.get("blocked_devices") or []):
            return CheckResult.deny("Device is blocked", violation="DEVICE")

        if config.get("require_company_managed"):
            if profile is None or not profile.is_company_managed:
                return CheckResult.deny("Company-managed device required", violation="DEVICE")

        os_name = info.os or (profile.os if profile else None)
        os_version = info.os_version or (profile.os_version if profile else None)
        browser = info.browser or (profile.browser if profile else None)
        browser_version = info.browser_version or (profile.browser_version if profile else None)

        required_os = config.get("require_os")
        if required_os and os_name not in required_os:
            return CheckResult.deny(f"Required OS: {', '.join(required_os)}", violation="DEVICE")

        for requirement in config.get("require_os_version") or []:
            if os_name and os_version and requirement.get("os") == os_name:
                if not compare_versions(os_version, requirement["min_version"]):
                    return CheckResult.deny(
                        f"OS version {requirement['min_version']} or higher required",
                        violation="DEVICE",
                    )

        required_browser = config.get("require_browser")
        if required_browser and browser not in required_browser:
            return CheckResult.deny(f"Required browser: {', '.join(required_browser)}", violation="DEVICE")

        for requirement in config.get("require_browser_version") or []:
            if browser and browser_version and requirement.get("browser") == browser:
                if not compare_versions(browser_version, requirement["min_version"]):
                    return CheckResult.deny(
                        f"Browser version {requirement['min_version']} or higher required",
                        violation="DEVICE",
                    )

        if config.get("require_anti_malware"):
            if profile is None or not profile.has_anti_malware:
                return CheckResult.deny("Anti-malware software required", violation="DEVICE")

        if config.get("require_encrypted_storage"):
            if profile is None or not profile.has_encrypted_storage:
                return CheckResult.deny("Encrypted storage required", violation="DEVICE")

        minimum = config.get("min_trust_level")
        if minimum:
            required = _trust_level(minimum)
            current = profile.trust_level if profile else TrustLevel.UNKNOWN
            if current < required:
                return CheckResult.deny(f"Minimum trust level required: {required}", violation="DEVICE")

        return CheckResult.allow()

    def _evaluate_abac(
        self,
        config: dict,
        context: AccessContext,
        subject_id: Optional[str],
        resource_type: Optional[str],
        resource_id: Optional[str],
    ) -> CheckResult:
        if self.policies is None:
            raise PolicyMisconfiguration("ABAC rule evaluated without a policy evaluator")
        attributes = self.policies.attributes.resolve(subject_id or "", resource_type or "", resource_id or "", context)
        return self.policies.evaluate_conditions(config.get("conditions"), attributes)

    def evaluate(
        self,
        rule_type: RuleType | str,
        config: dict,
        context: AccessContext,
        subject_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> CheckResult:
        """Dispatch one rule configuration to its predicate family."""
        try:
            rule_type = RuleType(rule_type) if isinstance(rule_type, str) else rule_type
        except ValueError:
            raise PolicyMisconfiguration(f"Unknown rule type: {rule_type}") from None

        if rule_type == RuleType.TIME_BASED:
            return self.evaluate_time_rule(config, context)
        if rule_type == RuleType.LOCATION_BASED:
            return self.evaluate_location_rule(config, context)
        if rule_type == RuleType.DEVICE_BASED:
            return self.evaluate_device_rule(config, context)
        if rule_type == RuleType.ABAC:
            return self._evaluate_abac(config, context, subject_id, resource_type, resource_id)
        if rule_type == RuleType.COMPOSITE:
            for nested in config.get("rules") or []:
                result = self.evaluate(
                    nested.get("type"),
                    nested.get("config") or {},
                    context,
                    subject_id,
                    resource_type,
                    resource_id,
                )
                if not result.allowed:
                    return result
            return CheckResult.allow()

        raise PolicyMisconfiguration(f"Unknown rule type: {rule_type}")

    def evaluate_access_rule(
        self,
        rule_id: str,
        context: Optional[AccessContext] = None,
        subject_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
    ) -> CheckResult:
        """
        Evaluate a stored rule.

        Missing or disabled rules allow. A rule outside its validity window
        denies.

        Raises:
            PolicyMisconfiguration: Unknown rule type or malformed config
        """
        context = context or AccessContext()
        rule = self.store.get_rule(rule_id)

        if rule is None or not rule.enabled:
            logger.warning(f"Access rule {rule_id} missing or disabled, allowing")
            return CheckResult.allow("Rule not found or disabled", fail_open=True)

        now = ensure_aware_utc(context.current_time or self.clock())
        if rule.valid_from and now < ensure_aware_utc(rule.valid_from):
            return CheckResult.deny("Rule not yet valid", violation="RULE_WINDOW", rule_id=rule.id)
        if rule.valid_until and now > ensure_aware_utc(rule.valid_until):
            return CheckResult.deny("Rule has expired", violation="RULE_WINDOW", rule_id=rule.id)

        result = self.evaluate(
            rule.rule_type,
            rule.config or {},
            context,
            subject_id,
            resource_type,
            resource_id,
        )
        result.details.setdefault("rule_id", rule.id)
        return result
