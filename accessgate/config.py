"""
Engine configuration.

All tunables of the decision engine live in one dataclass so that an
embedding application can build it from its own settings or from the
environment.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from accessgate.models import LogCategory


logger = logging.getLogger(__name__)

ENV_PREFIX = "ACCESSGATE_"


class WriteRule(Enum):
    """
    Level comparison used by MAC write checks.

    READ_EQUIVALENT: subject level must be >= object level, as for reads.
    STAR_PROPERTY: classical no-write-down, object level must be >= subject level.
    """
    READ_EQUIVALENT = "READ_EQUIVALENT"
    STAR_PROPERTY = "STAR_PROPERTY"


@dataclass
class EngineConfig:
    """
    Configuration for AccessEngine and its evaluators.

    Attributes:
        privileged_roles: Roles that bypass every check (still audited)
        mac_write_rule: Direction of the MAC write comparison
        review_interval_days: Period between mandatory clearance reviews
        business_hours: (start, end) hours used for the environment
            business-hours attribute, start inclusive and end exclusive
        default_timezone: IANA zone used when a time rule names none
        audit_category: Ledger category for access decisions
        signing_private_key_env: Environment variable holding the PEM private key
        signing_public_key_env: Environment variable holding the PEM public key
    """
    privileged_roles: frozenset[str] = field(default_factory=lambda: frozenset({"SUPER_ADMIN"}))
    mac_write_rule: WriteRule = WriteRule.READ_EQUIVALENT
    review_interval_days: int = 365
    business_hours: tuple[int, int] = (8, 18)
    default_timezone: str = "UTC"
    audit_category: LogCategory = LogCategory.SECURITY
    signing_private_key_env: str = "SIGNING_PRIVATE_KEY"
    signing_public_key_env: str = "SIGNING_PUBLIC_KEY"

    def __post_init__(self) -> None:
        self.privileged_roles = frozenset(self.privileged_roles)
        if isinstance(self.mac_write_rule, str):
            self.mac_write_rule = WriteRule(self.mac_write_rule.upper())
        if isinstance(self.audit_category, str):
            self.audit_category = LogCategory(self.audit_category.upper())
        start, end = self.business_hours
        if not (0 <= start < end <= 24):
            raise ValueError(f"Invalid business hours: {self.business_hours}")
        if self.review_interval_days <= 0:
            raise ValueError("review_interval_days must be positive")

    def is_privileged(self, role: Optional[str]) -> bool:
        return role is not None and role in self.privileged_roles

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build a configuration from ACCESSGATE_* environment variables.

        Recognized variables:
            ACCESSGATE_PRIVILEGED_ROLES   comma-separated role names
            ACCESSGATE_MAC_WRITE_RULE     READ_EQUIVALENT or STAR_PROPERTY
            ACCESSGATE_REVIEW_INTERVAL_DAYS
            ACCESSGATE_BUSINESS_HOURS     e.g. "8-18"
            ACCESSGATE_DEFAULT_TIMEZONE
            ACCESSGATE_AUDIT_CATEGORY
            ACCESSGATE_SIGNING_PRIVATE_KEY_ENV / ACCESSGATE_SIGNING_PUBLIC_KEY_ENV
        """
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        roles = env.get(f"{ENV_PREFIX}PRIVILEGED_ROLES")
        if roles:
            kwargs["privileged_roles"] = frozenset(
                r.strip() for r in roles.split(",") if r.strip()
            )

        write_rule = env.get(f"{ENV_PREFIX}MAC_WRITE_RULE")
        if write_rule:
            kwargs["mac_write_rule"] = WriteRule(write_rule.strip().upper())

        interval = env.get(f"{ENV_PREFIX}REVIEW_INTERVAL_DAYS")
        if interval:
            kwargs["review_interval_days"] = int(interval)

        hours = env.get(f"{ENV_PREFIX}BUSINESS_HOURS")
        if hours:
            start, _, end = hours.partition("-")
            kwargs["business_hours"] = (int(start), int(end))

        tz = env.get(f"{ENV_PREFIX}DEFAULT_TIMEZONE")
        if tz:
            kwargs["default_timezone"] = tz.strip()

        category = env.get(f"{ENV_PREFIX}AUDIT_CATEGORY")
        if category:
            kwargs["audit_category"] = LogCategory(category.strip().upper())

        private_env = env.get(f"{ENV_PREFIX}SIGNING_PRIVATE_KEY_ENV")
        if private_env:
            kwargs["signing_private_key_env"] = private_env
        public_env = env.get(f"{ENV_PREFIX}SIGNING_PUBLIC_KEY_ENV")
        if public_env:
            kwargs["signing_public_key_env"] = public_env

        config = cls(**kwargs)
        logger.debug(f"Loaded engine config from environment: {config}")
        return config
